"""Pydantic request schemas for the HTTP surface."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .models import Choice, Difficulty, Event, Language, NarrativeStyle, Outcome, TeamMember


class SessionCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    team: list[TeamMember] = Field(min_length=1, max_length=6)
    style: NarrativeStyle = NarrativeStyle.serious
    seed: int | None = Field(default=None, ge=0)
    difficulty: Difficulty = "normal"
    target_steps: int = Field(default=8, ge=4, le=16)
    language: Language = "en"


class ChoiceResolve(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event_id: str | None = None
    event: Event | None = None
    choice_index: int | None = Field(default=None, ge=0)
    choice: Choice | None = None


class StateAdvance(BaseModel):
    model_config = ConfigDict(extra="forbid")

    updated_team: list[TeamMember] = Field(min_length=1)
    outcome: Outcome
    choice: Choice | None = None


class VoteCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    question: str = Field(min_length=1, max_length=500)
    options: list[str] = Field(min_length=1, max_length=10)
    context: dict[str, Any] = Field(default_factory=dict)
    timeout_ms: int | None = Field(default=None, ge=10, le=60000)


class NegotiationCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    subject: str = Field(min_length=1, max_length=500)
    proposals: dict[str, dict[str, Any]] = Field(min_length=1)
    participants: list[str] | None = None
    max_rounds: int | None = Field(default=None, ge=1, le=10)
