"""Agent abstraction: profile, bounded memory and the perceive/reason/act loop.

An agent is constructed per session and registered with that session's
bus. Each invocation walks ``idle -> perceiving -> reasoning -> acting ->
idle``. ``reason`` only decides; everything that leaves the agent (bus
messages, reasoning-service calls) happens in ``act``.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..bus import ORCHESTRATOR, Message, MessageBus, MessageKind, Priority
from ..config import settings
from ..errors import CompletionError, RecoveryError, TurnFailedError
from ..models import SessionState
from ..payloads import NegotiationRound, TaskRequest, TaskResult, VoteCast, VoteRequest
from ..recovery import recover_json
from .adapters.base import CompletionAdapter

logger = logging.getLogger(__name__)


class AgentPhase(str, Enum):
    idle = "idle"
    perceiving = "perceiving"
    reasoning = "reasoning"
    acting = "acting"


class ActionType(str, Enum):
    generate = "generate"
    validate = "validate"
    vote = "vote"
    message = "message"
    wait = "wait"


@dataclass(frozen=True)
class AgentProfile:
    name: str
    role: str
    expertise: tuple[str, ...]
    voting_weight: float = 1.0
    can_initiate: bool = False
    temperature: float = 0.7
    max_tokens: int = 600

    def __post_init__(self) -> None:
        if self.voting_weight <= 0:
            raise ValueError("voting_weight must be positive")


@dataclass
class Perception:
    """What an agent observes in one invocation."""

    state: SessionState | None
    messages: list[Message] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class AgentAction:
    type: ActionType
    data: dict[str, Any] = field(default_factory=dict)
    confidence: float = 1.0
    reasoning: str = ""


@dataclass
class ActionResult:
    """Outcome of one agent invocation as seen by the orchestrator."""

    agent: str
    action: AgentAction | None
    output: Any = None

    @property
    def stop_pipeline(self) -> bool:
        return isinstance(self.output, dict) and bool(self.output.get("stop_pipeline"))


class BaseAgent:
    """Shared loop; roles provide task handlers and decision policies."""

    tasks: frozenset[str] = frozenset()

    def __init__(
        self,
        profile: AgentProfile,
        bus: MessageBus,
        adapter: CompletionAdapter | None = None,
        memory_size: int | None = None,
    ) -> None:
        self.profile = profile
        self.bus = bus
        self.adapter = adapter
        self.phase = AgentPhase.idle
        self.active = True
        self._memory: deque[Message] = deque(maxlen=memory_size or settings.agent_memory_size)
        self._handled: set[str] = set()
        self._perception: Perception | None = None

    @property
    def name(self) -> str:
        return self.profile.name

    @property
    def memory(self) -> list[Message]:
        return list(self._memory)

    @property
    def perception(self) -> Perception | None:
        return self._perception

    def perceive(self, perception: Perception) -> None:
        """Merge messages addressed to this agent into memory, skipping known ids."""

        self.phase = AgentPhase.perceiving
        known = {m.id for m in self._memory}
        for message in perception.messages:
            if message.id in known:
                continue
            if message.recipient not in (self.name, "all"):
                continue
            if len(self._memory) == self._memory.maxlen:
                self._handled.discard(self._memory[0].id)
            self._memory.append(message)
            known.add(message.id)
        self._perception = perception

    def unread(self) -> list[Message]:
        return [m for m in self._memory if m.id not in self._handled]

    def mark_handled(self, message: Message) -> None:
        self._handled.add(message.id)

    async def reason(self) -> AgentAction | None:
        """Pick the next action: own tasks first, then votes, reviews, idle policy."""

        if self._perception is None:
            return None
        for message in self.unread():
            payload = message.payload
            if isinstance(payload, TaskRequest) and payload.task in self.tasks:
                self.mark_handled(message)
                action_type = ActionType.validate if payload.task == "validate_choices" else ActionType.generate
                return AgentAction(action_type, {"request": message}, 0.9, f"Received {payload.task} request")
        for message in self.unread():
            if isinstance(message.payload, VoteRequest):
                self.mark_handled(message)
                return AgentAction(ActionType.vote, {"request": message}, 0.8, "Participating in vote")
        for message in self.unread():
            if isinstance(message.payload, NegotiationRound):
                self.mark_handled(message)
                return AgentAction(ActionType.message, {"request": message}, 0.8, "Reviewing proposals")
        return self.idle_action()

    def idle_action(self) -> AgentAction | None:
        return AgentAction(ActionType.wait, reasoning="No action needed")

    async def act(self, action: AgentAction) -> Any:
        self.phase = AgentPhase.acting
        if action.type in (ActionType.generate, ActionType.validate):
            return await self._answer_task(action.data["request"])
        if action.type == ActionType.vote:
            return await self._cast_vote(action.data["request"])
        if action.type == ActionType.message:
            request = action.data.get("request")
            if request is not None and isinstance(request.payload, NegotiationRound):
                return self._send_review(request)
            return self.send(
                action.data["recipient"],
                action.data.get("kind", MessageKind.broadcast),
                action.data["payload"],
                priority=action.data.get("priority", Priority.medium),
            )
        return None

    async def run(self, perception: Perception) -> ActionResult:
        if not self.active:
            return ActionResult(self.name, None)
        try:
            self.perceive(perception)
            self.phase = AgentPhase.reasoning
            action = await self.reason()
            output = None
            if action is not None and action.type != ActionType.wait:
                output = await self.act(action)
            return ActionResult(self.name, action, output)
        finally:
            self.phase = AgentPhase.idle

    def stop(self) -> None:
        self.active = False

    def start(self) -> None:
        self.active = True

    def send(
        self,
        recipient: str,
        kind: MessageKind | str,
        payload: dict[str, Any] | Any,
        *,
        priority: Priority | str = Priority.medium,
        requires_response: bool = False,
        in_reply_to: str | None = None,
    ) -> Message:
        return self.bus.publish(
            self.name,
            recipient,
            kind,
            payload,
            priority=priority,
            requires_response=requires_response,
            in_reply_to=in_reply_to,
        )

    async def complete_json(self, prompt: str) -> dict[str, Any]:
        """Call the reasoning service and recover one JSON record from its text."""

        if self.adapter is None:
            raise RuntimeError(f"{self.name} has no completion adapter")
        text = await self.adapter.complete(
            prompt,
            max_tokens=self.profile.max_tokens,
            temperature=self.profile.temperature,
        )
        return recover_json(text)

    async def handle_task(self, task: str, context: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    async def _answer_task(self, request: Message) -> dict[str, Any]:
        payload = request.payload
        context = {**self._perception.context, **payload.context} if self._perception else dict(payload.context)
        try:
            output = await self.handle_task(payload.task, context)
        except (CompletionError, RecoveryError) as exc:
            logger.error("%s failed on %s: %s", self.name, payload.task, exc)
            raise TurnFailedError(self.name, exc) from exc
        self.send(
            request.sender,
            MessageKind.response,
            TaskResult(task=payload.task, data=_jsonable(output)),
            priority=Priority.high,
            in_reply_to=request.id,
        )
        return output

    async def choose_vote(self, request: VoteRequest) -> tuple[str, float, str]:
        """Return ``(choice, confidence, reasoning)``; first option by default."""

        return request.options[0], 0.5, "First option by default"

    async def _cast_vote(self, request: Message) -> Message:
        payload: VoteRequest = request.payload
        choice, confidence, reasoning = await self.choose_vote(payload)
        if choice not in payload.options:
            logger.warning("%s voted for unknown option %r, using %r", self.name, choice, payload.options[0])
            choice = payload.options[0]
        return self.send(
            ORCHESTRATOR,
            MessageKind.vote,
            VoteCast(
                vote_id=payload.vote_id,
                choice=choice,
                confidence=max(0.0, min(1.0, confidence)),
                weight=self.profile.voting_weight,
                reasoning=reasoning,
            ),
            priority=Priority.high,
        )

    def review(self, negotiation: NegotiationRound) -> dict[str, Any]:
        """Default review: agree with and prefer the first proposal."""

        return {"agrees": True, "preferred_proposal": 0, "revised_proposal": None}

    def _send_review(self, request: Message) -> Message:
        payload: NegotiationRound = request.payload
        verdict = self.review(payload)
        return self.send(
            ORCHESTRATOR,
            MessageKind.negotiation,
            {
                "topic": "negotiation_review",
                "negotiation_id": payload.negotiation_id,
                "round": payload.round,
                **verdict,
            },
            priority=Priority.high,
        )


def _jsonable(output: Any) -> dict[str, Any]:
    if not isinstance(output, dict):
        return {"value": output}
    result: dict[str, Any] = {}
    for key, value in output.items():
        if hasattr(value, "model_dump"):
            result[key] = value.model_dump(mode="json")
        elif isinstance(value, list):
            result[key] = [v.model_dump(mode="json") if hasattr(v, "model_dump") else v for v in value]
        else:
            result[key] = value
    return result
