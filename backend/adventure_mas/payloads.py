"""Closed set of message payload variants.

Every bus message carries exactly one of these payloads, discriminated by
``topic``. Each topic is legal only for certain message kinds; the pairing
is checked when a message is published, so agents never receive a
payload shape they do not understand.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

TaskName = Literal[
    "generate_quest",
    "generate_event",
    "generate_choices",
    "validate_choices",
    "narrate_outcome",
]

# Expertise tags a task request is routed to when broadcast.
TASK_TAGS: dict[str, frozenset[str]] = {
    "generate_quest": frozenset({"quest_design", "world_building"}),
    "generate_event": frozenset({"event_generation", "pacing"}),
    "generate_choices": frozenset({"choice_design", "strategy"}),
    "validate_choices": frozenset({"validation", "risk_analysis"}),
    "narrate_outcome": frozenset({"narration", "outcome_description"}),
}


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class TaskRequest(_Payload):
    topic: Literal["task_request"] = "task_request"
    task: TaskName
    context: dict[str, Any] = Field(default_factory=dict)


class TaskResult(_Payload):
    topic: Literal["task_result"] = "task_result"
    task: TaskName
    data: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


class Alert(_Payload):
    """Agent-initiated notice; ``subject`` is an expertise tag used for routing."""

    topic: Literal["alert"] = "alert"
    level: Literal["info", "warning", "critical"] = "info"
    subject: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)


class VoteRequest(_Payload):
    topic: Literal["vote_request"] = "vote_request"
    vote_id: str
    question: str
    options: list[str] = Field(min_length=1)
    context: dict[str, Any] = Field(default_factory=dict)


class VoteCast(_Payload):
    topic: Literal["vote_cast"] = "vote_cast"
    vote_id: str
    choice: str
    confidence: float = Field(ge=0.0, le=1.0)
    weight: float = Field(gt=0.0)
    reasoning: str = ""


class NegotiationRound(_Payload):
    topic: Literal["negotiation_round"] = "negotiation_round"
    negotiation_id: str
    subject: str
    round: int = Field(ge=1)
    proposals: list[dict[str, Any]] = Field(min_length=1)


class NegotiationReview(_Payload):
    topic: Literal["negotiation_review"] = "negotiation_review"
    negotiation_id: str
    round: int = Field(ge=1)
    agrees: bool
    preferred_proposal: int = Field(default=0, ge=0)
    revised_proposal: dict[str, Any] | None = None


Payload = Annotated[
    TaskRequest | TaskResult | Alert | VoteRequest | VoteCast | NegotiationRound | NegotiationReview,
    Field(discriminator="topic"),
]

# Message kinds each payload topic may travel under.
ALLOWED_KINDS: dict[str, frozenset[str]] = {
    "task_request": frozenset({"request"}),
    "task_result": frozenset({"response"}),
    "alert": frozenset({"broadcast", "request"}),
    "vote_request": frozenset({"broadcast", "vote"}),
    "vote_cast": frozenset({"vote"}),
    "negotiation_round": frozenset({"negotiation", "broadcast"}),
    "negotiation_review": frozenset({"negotiation"}),
}


def routing_tags(payload: _Payload) -> frozenset[str]:
    """Expertise tags a broadcast of ``payload`` targets; empty means everyone."""

    if isinstance(payload, TaskRequest):
        return TASK_TAGS[payload.task]
    if isinstance(payload, Alert):
        return frozenset({payload.subject})
    return frozenset()
