"""Session service: the inbound command surface of one adventure.

An ``AdventureSession`` owns its orchestrator, bus, agents, interaction
log and adventure memory. Game state is held by the caller and passed by
value into every command; commands return new values and never mutate
their inputs.
"""

import asyncio
import functools
import logging
import math
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .agents.adapters.base import CompletionAdapter
from .agents.adapters.mock_adapter import MockCompletionAdapter
from .agents.adapters.openai_adapter import OpenAICompletionAdapter
from .agents.roles import CHOICE_DESIGNER, NARRATOR, QUEST_DESIGNER, VALIDATOR, build_agents
from .analysis import evaluate_decision_quality
from .bus import MessageBus
from .collector import InteractionLogCollector
from .config import settings
from .consensus import NegotiationResult, VotingResult
from .errors import SessionOverError, SpeciesLookupError
from .models import (
    Choice,
    ChoiceValidation,
    Difficulty,
    Event,
    GameOver,
    Language,
    NarrationBundle,
    NarrativeStyle,
    Outcome,
    SessionState,
    TeamMember,
)
from .orchestrator import Orchestrator
from .rules import apply_damage, enemy_power, heal_team, member_power, resolve_mechanics, team_knocked_out
from .species import SpeciesClient
from .utils import new_id, utc_now

logger = logging.getLogger(__name__)

VALID_BONUS = (10, -5)
INVALID_PENALTY = (-10, 5)


def _serialized(method):
    """Run a session command while holding the session lock."""

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        async with self._lock:
            return await method(self, *args, **kwargs)

    return wrapper


def pick_adapter() -> CompletionAdapter:
    if settings.ai_mode == "mock":
        return MockCompletionAdapter()
    if settings.ai_mode == "openai":
        return OpenAICompletionAdapter()
    raise ValueError(f"Unknown AI_MODE: {settings.ai_mode!r}")


@dataclass(frozen=True)
class MemoryEntry:
    step: int
    tags: tuple[str, ...]
    summary: str
    timestamp: datetime = field(default_factory=utc_now)


class AdventureMemory:
    """Bounded per-session log of step summaries."""

    def __init__(self, limit: int = 50) -> None:
        self._entries: deque[MemoryEntry] = deque(maxlen=limit)

    def store(self, step: int, tags: list[str], summary: str) -> MemoryEntry:
        entry = MemoryEntry(step=step, tags=tuple(t.lower() for t in tags), summary=summary)
        self._entries.append(entry)
        return entry

    def retrieve(self, query: str | None = None, tags: list[str] | None = None, limit: int = 5) -> list[MemoryEntry]:
        """Most recent entries matching every tag and the query substring."""

        wanted = {t.lower() for t in tags or []}
        needle = query.lower() if query else None
        matches = [
            e
            for e in self._entries
            if wanted.issubset(e.tags) and (needle is None or needle in e.summary.lower())
        ]
        return matches[-limit:] if limit > 0 else []

    def summaries(self, limit: int = 5) -> list[str]:
        return [e.summary for e in self.retrieve(limit=limit)]

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True)
class EventBundle:
    event: Event
    narration: str
    quest_progress: str
    choices: list[ChoiceValidation]
    step: int


@dataclass(frozen=True)
class Resolution:
    outcome: Outcome
    updated_team: list[TeamMember]
    session_over: bool
    validation: ChoiceValidation
    decision_quality: dict[str, Any]


class AdventureSession:
    def __init__(
        self,
        adapter: CompletionAdapter | None = None,
        *,
        species: SpeciesClient | None = None,
        session_id: str | None = None,
        memory_limit: int = 50,
    ) -> None:
        self.session_id = session_id or new_id("adv")
        self.adapter = adapter or pick_adapter()
        self.bus = MessageBus()
        self.collector = InteractionLogCollector()
        self.orchestrator = Orchestrator(self.bus, self.collector)
        for agent in build_agents(self.bus, self.adapter):
            self.orchestrator.register(agent)
        self.memory = AdventureMemory(memory_limit)
        # Agent mailboxes and the bus round are shared; one command drives them at a time.
        self._lock = asyncio.Lock()
        self.species = species
        if self.species is None and settings.species_lookup:
            self.species = SpeciesClient()

    @_serialized
    async def start_session(
        self,
        team: list[TeamMember],
        style: NarrativeStyle | str,
        seed: int | None = None,
        difficulty: Difficulty = "normal",
        target_steps: int = 8,
        language: Language = "en",
    ) -> SessionState:
        if not team:
            raise ValueError("A session needs at least one team member")
        style = NarrativeStyle(style)
        if seed is None:
            seed = int(utc_now().timestamp() * 1000) % 2_147_483_647
        flavour = await self._flavour(team, language)

        results = await self.orchestrator.run_pipeline(
            [QUEST_DESIGNER],
            None,
            tasks={
                QUEST_DESIGNER: (
                    "generate_quest",
                    {
                        "team": [m.model_dump() for m in team],
                        "style": style.value,
                        "difficulty": difficulty,
                        "target_steps": target_steps,
                        "language": language,
                        "flavour": flavour,
                    },
                )
            },
        )
        quest = results[QUEST_DESIGNER].output["quest"]
        state = SessionState(
            session_id=self.session_id,
            language=language,
            narrative_style=style,
            quest=quest,
            seed=seed,
            team=list(team),
        )
        self.memory.store(0, ["quest"], f"Quest started: {quest.title}")
        logger.info("Session %s started: %s (seed=%s)", self.session_id, quest.title, seed)
        return state

    async def _flavour(self, team: list[TeamMember], language: str) -> list[str]:
        if self.species is None:
            return []
        lines: list[str] = []
        for member in team:
            try:
                info = await self.species.get_species(member.id, language)
            except SpeciesLookupError as exc:
                logger.warning("Species lookup failed for %s: %s", member.name, exc)
                continue
            line = f"{member.name} ({info.localized_name}, {'/'.join(info.types) or 'normal'})"
            lines.append(f"{line}: {info.flavour}" if info.flavour else line)
        return lines

    @_serialized
    async def advance_event(self, state: SessionState) -> EventBundle:
        """Generate, dress and validate the next step's event."""

        if team_knocked_out(state.team):
            raise SessionOverError("The team is knocked out")
        results = await self.orchestrator.run_pipeline(
            [QUEST_DESIGNER, CHOICE_DESIGNER, VALIDATOR],
            state,
            tasks={
                QUEST_DESIGNER: ("generate_event", {"memories": self.memory.summaries()}),
                CHOICE_DESIGNER: ("generate_choices", {}),
                VALIDATOR: ("validate_choices", {}),
            },
        )
        first = results.get(QUEST_DESIGNER)
        if first is not None and first.stop_pipeline:
            raise SessionOverError(first.output.get("reason", "pipeline stopped"))

        designed = results[CHOICE_DESIGNER].output
        validations = results[VALIDATOR].output["validations"]
        event: Event = designed["event"]
        # Lets the validator raise its own alerts on the fresh state.
        await self.orchestrator.run_agent(VALIDATOR, state)

        where = event.context.location
        self.memory.store(event.step, [event.type.value, "event"], f"Step {event.step}: {event.type.value} at {where}")
        return EventBundle(
            event=event,
            narration=designed["narration"],
            quest_progress=designed["quest_progress"],
            choices=validations,
            step=event.step,
        )

    @_serialized
    async def resolve_choice(self, state: SessionState, event: Event, choice: Choice) -> Resolution:
        alive = [m for m in state.team if not m.fainted]
        if not alive:
            raise SessionOverError("The team is knocked out")
        by_id = {m.id: m for m in alive}
        affected = [by_id[i] for i in choice.affected_members if i in by_id] or [alive[0]]

        player_power = member_power(affected[0])
        foe_power = enemy_power(event.context.enemy_level)
        mechanics = resolve_mechanics(event, player_power, foe_power, choice.risk)

        checked = await self.orchestrator.run_pipeline(
            [VALIDATOR],
            state,
            tasks={
                VALIDATOR: (
                    "validate_choices",
                    {"event": event.model_dump(mode="json"), "choices": [choice.model_dump(mode="json")]},
                )
            },
        )
        validation: ChoiceValidation = checked[VALIDATOR].output["validations"][0]
        score_adjust, health_adjust = VALID_BONUS if validation.is_valid else INVALID_PENALTY
        score_delta = mechanics.score_delta + score_adjust
        health_lost = max(0, mechanics.health_lost + health_adjust)

        team = heal_team(state.team) if mechanics.heals_team else list(state.team)
        if health_lost:
            per_member = math.ceil(health_lost / len(affected))
            hit = {m.id for m in affected}
            team = [apply_damage(m, per_member) if m.id in hit else m for m in team]

        adjusted = {
            "success": mechanics.success,
            "score_delta": score_delta,
            "health_lost": health_lost,
            "damage_dealt": mechanics.damage_dealt,
        }
        told = await self.orchestrator.run_pipeline(
            [NARRATOR],
            state,
            tasks={
                NARRATOR: (
                    "narrate_outcome",
                    {
                        "event": event.model_dump(mode="json"),
                        "choice": choice.model_dump(mode="json"),
                        "mechanics": adjusted,
                    },
                )
            },
        )
        narration: NarrationBundle = told[NARRATOR].output["narration"]

        mission_failed = event.context.mission_critical and not mechanics.success
        session_over = team_knocked_out(team) or mission_failed
        outcome = Outcome(
            success=mechanics.success,
            score_delta=score_delta,
            total_score=state.cumulative_score + score_delta,
            health_lost=health_lost,
            item_gained=event.context.item_reward if mechanics.success else None,
            mission_failed=mission_failed,
            captured=mechanics.captured,
            defeated=mechanics.defeated,
            narration=narration,
            is_game_over=session_over,
            is_victory=False if session_over else None,
        )
        verdict = "success" if outcome.success else "failure"
        self.memory.store(
            event.step,
            [event.type.value, verdict],
            f"Step {event.step}: {choice.label} ({choice.risk.value}) ended in {verdict}",
        )
        logger.info(
            "Session %s step %s resolved: %s score=%+d health_lost=%s",
            self.session_id,
            event.step,
            verdict,
            score_delta,
            health_lost,
        )
        return Resolution(
            outcome=outcome,
            updated_team=team,
            session_over=session_over,
            validation=validation,
            decision_quality=evaluate_decision_quality(choice, outcome),
        )

    def advance_state(
        self,
        state: SessionState,
        updated_team: list[TeamMember],
        outcome: Outcome,
        choice: Choice | None = None,
    ) -> SessionState | GameOver:
        """Commit a resolved step, or end the session."""

        step = state.current_step + 1
        captured = state.captured_count + int(outcome.captured)
        defeated = state.defeated_count + int(outcome.defeated)

        ending: tuple[bool, str] | None = None
        if team_knocked_out(updated_team):
            ending = False, f"The team can go no further. '{state.quest.title}' ends in defeat."
        elif outcome.mission_failed:
            ending = False, f"A decisive moment slipped away. '{state.quest.title}' has failed."
        elif step >= state.quest.target_steps and outcome.success:
            ending = True, f"Against all odds, '{state.quest.title}' is complete!"
        if ending is not None:
            victory, text = ending
            logger.info("Session %s over at step %s (victory=%s)", self.session_id, step, victory)
            self.collector.log_system(text, {"victory": victory, "score": outcome.total_score})
            return GameOver(
                victory=victory,
                final_narration=text,
                steps_completed=len(state.completed_steps) + int(victory),
                captured_count=captured,
                defeated_count=defeated,
                final_team=updated_team,
                score=outcome.total_score,
            )

        history = [*state.choices_history, choice.label] if choice is not None else list(state.choices_history)
        return state.model_copy(
            update={
                "current_step": step,
                "completed_steps": [*state.completed_steps, step],
                "cumulative_score": outcome.total_score,
                "team": list(updated_team),
                "captured_count": captured,
                "defeated_count": defeated,
                "tension_level": min(3, step // 3),
                "choices_history": history,
                "last_action_at": utc_now(),
            }
        )

    @_serialized
    async def collaborative_decision(
        self,
        question: str,
        options: list[str],
        context: dict[str, Any] | None = None,
        *,
        state: SessionState | None = None,
        timeout_ms: int | None = None,
    ) -> VotingResult:
        if not options:
            raise ValueError("A vote needs at least one option")
        return await self.orchestrator.request_vote(
            question, options, context, state=state, timeout_ms=timeout_ms
        )

    @_serialized
    async def negotiate(
        self,
        subject: str,
        proposals: dict[str, dict[str, Any]],
        *,
        participants: list[str] | None = None,
        max_rounds: int | None = None,
        state: SessionState | None = None,
    ) -> NegotiationResult:
        return await self.orchestrator.negotiate(
            participants or self.orchestrator.agents,
            subject,
            proposals,
            state=state,
            max_rounds=max_rounds,
        )

    def alerts(self) -> list[dict[str, Any]]:
        return [log.model_dump(mode="json") for log in self.collector.logs() if log.type == "alert"]

    def stats(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "agents": self.orchestrator.agents,
            "bus": self.bus.stats(),
            "log_count": self.collector.count(),
            "memory_entries": len(self.memory),
        }
