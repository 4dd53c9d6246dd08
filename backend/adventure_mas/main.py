"""FastAPI application entrypoint and REST/WebSocket surface.

Sessions live in a bounded in-memory registry; nothing is persisted. The
caller may either let the registry track the current state between calls
or pass events and outcomes back explicitly.
"""

import asyncio
import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from typing import Any

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .analysis import estimate_steps_to_failure
from .collector import InteractionLog
from .config import settings
from .errors import SessionOverError, TurnFailedError
from .messaging import ConnectionManager
from .models import GameOver, SessionState
from .schemas import ChoiceResolve, NegotiationCreate, SessionCreate, StateAdvance, VoteCreate
from .service import AdventureSession, EventBundle, Resolution

logger = logging.getLogger(__name__)

PENDING_EVENTS = 8


@dataclass
class SessionRecord:
    session: AdventureSession
    state: SessionState | None = None
    game_over: GameOver | None = None
    events: OrderedDict[str, EventBundle] = field(default_factory=OrderedDict)
    last_resolution: Resolution | None = None


sessions: OrderedDict[str, SessionRecord] = OrderedDict()
ws_manager = ConnectionManager()


def _register(session: AdventureSession) -> SessionRecord:
    while len(sessions) >= settings.session_limit:
        evicted_id, _ = next(iter(sessions.items()))
        logger.warning("Session limit reached, evicting %s", evicted_id)
        _drop(evicted_id)
    record = SessionRecord(session=session)
    sessions[session.session_id] = record
    return record


def _drop(session_id: str) -> SessionRecord | None:
    return sessions.pop(session_id, None)


def _get_record(session_id: str) -> SessionRecord:
    record = sessions.get(session_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Session not found")
    sessions.move_to_end(session_id)
    return record


def _require_live(record: SessionRecord) -> SessionState:
    if record.game_over is not None:
        raise HTTPException(status_code=409, detail="Session is over")
    if record.state is None:
        raise HTTPException(status_code=409, detail="Session has no state yet")
    return record.state


@asynccontextmanager
async def lifespan(_app: FastAPI):
    logger.info("Adventure service starting (ai_mode=%s)", settings.ai_mode)
    yield
    for session_id in list(sessions):
        _drop(session_id)


app = FastAPI(title="Adventure Multi-Agent Orchestrator", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.post("/api/v1/sessions")
async def create_session(payload: SessionCreate):
    session = AdventureSession()
    record = _register(session)
    try:
        record.state = await session.start_session(
            payload.team,
            payload.style,
            seed=payload.seed,
            difficulty=payload.difficulty,
            target_steps=payload.target_steps,
            language=payload.language,
        )
    except TurnFailedError as exc:
        _drop(session.session_id)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"session_id": session.session_id, "state": record.state.model_dump(mode="json")}


@app.get("/api/v1/sessions/{session_id}")
def get_session(session_id: str):
    record = _get_record(session_id)
    return {
        "session_id": session_id,
        "state": record.state.model_dump(mode="json") if record.state else None,
        "game_over": record.game_over.model_dump(mode="json") if record.game_over else None,
    }


@app.post("/api/v1/sessions/{session_id}/events")
async def advance_event(session_id: str):
    record = _get_record(session_id)
    state = _require_live(record)
    try:
        bundle = await record.session.advance_event(state)
    except TurnFailedError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except SessionOverError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    record.events[bundle.event.id] = bundle
    while len(record.events) > PENDING_EVENTS:
        record.events.popitem(last=False)
    return {
        "event": bundle.event.model_dump(mode="json"),
        "narration": bundle.narration,
        "quest_progress": bundle.quest_progress,
        "choices": [v.model_dump(mode="json") for v in bundle.choices],
        "step": bundle.step,
    }


@app.post("/api/v1/sessions/{session_id}/resolve")
async def resolve_choice(session_id: str, payload: ChoiceResolve):
    record = _get_record(session_id)
    state = _require_live(record)

    bundle = record.events.get(payload.event_id) if payload.event_id else None
    if payload.event_id and bundle is None:
        raise HTTPException(status_code=404, detail="Event not found")
    event = payload.event or (bundle.event if bundle else None)
    if event is None:
        raise HTTPException(status_code=400, detail="Provide event_id or event")

    choice = payload.choice
    if choice is None and payload.choice_index is not None:
        if bundle is None:
            raise HTTPException(status_code=400, detail="choice_index requires event_id")
        if payload.choice_index >= len(bundle.choices):
            raise HTTPException(status_code=400, detail="choice_index out of range")
        choice = bundle.choices[payload.choice_index].choice
    if choice is None:
        raise HTTPException(status_code=400, detail="Provide choice_index or choice")

    try:
        resolution = await record.session.resolve_choice(state, event, choice)
    except TurnFailedError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except SessionOverError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    record.last_resolution = resolution
    return {
        "outcome": resolution.outcome.model_dump(mode="json"),
        "updated_team": [m.model_dump(mode="json") for m in resolution.updated_team],
        "session_over": resolution.session_over,
        "validation": resolution.validation.model_dump(mode="json"),
        "decision_quality": resolution.decision_quality,
        "choice": choice.model_dump(mode="json"),
    }


@app.put("/api/v1/sessions/{session_id}/state")
def advance_state(session_id: str, payload: StateAdvance):
    record = _get_record(session_id)
    state = _require_live(record)
    result = record.session.advance_state(state, payload.updated_team, payload.outcome, payload.choice)
    record.events.clear()
    if isinstance(result, GameOver):
        record.game_over = result
        return {"state": None, "game_over": result.model_dump(mode="json")}
    record.state = result
    return {"state": result.model_dump(mode="json"), "game_over": None}


@app.post("/api/v1/sessions/{session_id}/vote")
async def collaborative_vote(session_id: str, payload: VoteCreate):
    record = _get_record(session_id)
    result = await record.session.collaborative_decision(
        payload.question,
        payload.options,
        payload.context,
        state=record.state,
        timeout_ms=payload.timeout_ms,
    )
    return {**asdict(result), "complete": result.complete}


@app.post("/api/v1/sessions/{session_id}/negotiate")
async def negotiate(session_id: str, payload: NegotiationCreate):
    record = _get_record(session_id)
    unknown = [p for p in payload.participants or [] if p not in record.session.orchestrator.agents]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown participants: {', '.join(unknown)}")
    result = await record.session.negotiate(
        payload.subject,
        payload.proposals,
        participants=payload.participants,
        max_rounds=payload.max_rounds,
        state=record.state,
    )
    return asdict(result)


@app.get("/api/v1/sessions/{session_id}/logs")
def list_logs(
    session_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    agent: str | None = None,
    since: str | None = None,
):
    record = _get_record(session_id)
    collector = record.session.collector
    rows = collector.logs_since(since) if since else collector.logs()
    if agent:
        rows = [row for row in rows if agent in (row.sender, row.recipient)]
    return [row.model_dump(mode="json") for row in rows[-limit:]]


@app.get("/api/v1/sessions/{session_id}/stats")
def session_stats(session_id: str):
    record = _get_record(session_id)
    return {
        **record.session.stats(),
        "step": record.state.current_step if record.state else 0,
        "score": record.state.cumulative_score if record.state else 0,
        "is_game_over": record.game_over is not None,
        "alerts": len(record.session.alerts()),
        "danger": estimate_steps_to_failure(record.state) if record.state else None,
        "websockets": ws_manager.count(session_id),
    }


@app.delete("/api/v1/sessions/{session_id}")
async def delete_session(session_id: str):
    if _drop(session_id) is None:
        raise HTTPException(status_code=404, detail="Session not found")
    await ws_manager.broadcast(session_id, {"type": "status", "status": "deleted"})
    return {"ok": True}


@app.websocket("/ws/sessions/{session_id}")
async def session_ws(websocket: WebSocket, session_id: str):
    record = sessions.get(session_id)
    if record is None:
        await websocket.close(code=4404)
        return
    collector = record.session.collector
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    # Entries may be recorded from another thread or loop.
    def forward(entry: InteractionLog) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, entry.model_dump(mode="json"))

    await ws_manager.connect(session_id, websocket)
    await websocket.send_json({"type": "history", "logs": [row.model_dump(mode="json") for row in collector.recent(20)]})
    collector.subscribe(forward)
    sender = asyncio.create_task(_forward_logs(websocket, queue))
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Websocket closed for session %s", session_id)
    finally:
        collector.unsubscribe(forward)
        await ws_manager.disconnect(session_id, websocket)
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)


async def _forward_logs(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        entry = await queue.get()
        await websocket.send_json({"type": "log", "log": entry})
