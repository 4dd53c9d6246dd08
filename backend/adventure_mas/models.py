"""Domain records exchanged between the orchestrator, agents and callers.

Game state is passed by value: records are frozen and the rules engine
derives new copies with ``model_copy(update=...)`` instead of mutating.
"""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .utils import utc_now

Difficulty = Literal["easy", "normal", "hard"]
Language = Literal["en", "fr"]


class RiskLevel(str, Enum):
    safe = "SAFE"
    moderate = "MODERATE"
    risky = "RISKY"


class EventType(str, Enum):
    wild_battle = "wild_battle"
    trainer_battle = "trainer_battle"
    capture = "capture"
    rest_stop = "rest_stop"
    narrative_choice = "narrative_choice"
    evolution = "evolution"
    boss = "boss"


BATTLE_EVENTS = frozenset({EventType.wild_battle, EventType.trainer_battle, EventType.boss})


class NarrativeStyle(str, Enum):
    serious = "serious"
    humor = "humor"
    epic = "epic"


class TeamMember(BaseModel):
    """One combatant of the player's team."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    types: list[str] = Field(default_factory=lambda: ["normal"])
    current_health: int = Field(ge=0)
    max_health: int = Field(gt=0)

    @field_validator("types")
    @classmethod
    def _lower_types(cls, value: list[str]) -> list[str]:
        cleaned = [str(t).strip().lower() for t in value if str(t).strip()]
        return cleaned or ["normal"]

    @model_validator(mode="after")
    def _health_within_max(self) -> "TeamMember":
        if self.current_health > self.max_health:
            raise ValueError("current_health must not exceed max_health")
        return self

    @property
    def fainted(self) -> bool:
        return self.current_health == 0


class Quest(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str = "Adventure Quest"
    description: str = "A mysterious adventure awaits..."
    objective: str = "Complete the journey"
    difficulty: Difficulty = "normal"
    target_steps: int = Field(default=8, ge=1)


class EventContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    enemy_name: str | None = None
    enemy_level: int | None = None
    enemy_types: list[str] = Field(default_factory=lambda: ["normal"])
    item_reward: str | None = None
    location: str = "a remote route"
    npc_name: str | None = None
    quest_relevance: str = "Part of the quest journey"
    mission_critical: bool = False


class Event(BaseModel):
    """A generated encounter; its seed drives every mechanical roll."""

    model_config = ConfigDict(frozen=True)

    id: str
    step: int
    type: EventType = EventType.narrative_choice
    difficulty: Difficulty = "normal"
    scene: str
    context: EventContext = Field(default_factory=EventContext)
    event_seed: int
    generated_at: datetime = Field(default_factory=utc_now)


class Choice(BaseModel):
    model_config = ConfigDict(frozen=True)

    risk: RiskLevel = RiskLevel.moderate
    label: str = "Player choice"
    description: str = "Player action"
    affected_members: list[int] = Field(default_factory=list)
    potential_consequences: str | None = None


class ChoiceValidation(BaseModel):
    """Validator verdict for one choice; warnings never abort a turn."""

    model_config = ConfigDict(frozen=True)

    choice: Choice
    is_valid: bool
    warnings: list[str] = Field(default_factory=list)
    adjusted_consequences: str | None = None


class NarrationBundle(BaseModel):
    model_config = ConfigDict(frozen=True)

    narration: str = "The action concludes..."
    state_highlights: list[str] = Field(default_factory=list)
    quest_progress: str = "The quest continues..."
    next_hook: str = "The adventure continues..."


class Outcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    score_delta: int
    total_score: int
    health_lost: int
    item_gained: str | None = None
    mission_failed: bool = False
    captured: bool = False
    defeated: bool = False
    narration: NarrationBundle = Field(default_factory=NarrationBundle)
    is_game_over: bool = False
    is_victory: bool | None = None


class SessionState(BaseModel):
    """Caller-held session value; every command receives and returns it."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    language: Language = "en"
    narrative_style: NarrativeStyle = NarrativeStyle.serious
    quest: Quest
    current_step: int = 0
    completed_steps: list[int] = Field(default_factory=list)
    seed: int
    cumulative_score: int = 0
    team: list[TeamMember]
    defeated_count: int = 0
    captured_count: int = 0
    tension_level: int = Field(default=0, ge=0, le=3)
    choices_history: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    last_action_at: datetime = Field(default_factory=utc_now)


class GameOver(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_game_over: Literal[True] = True
    victory: bool
    final_narration: str
    steps_completed: int
    captured_count: int = 0
    defeated_count: int = 0
    final_team: list[TeamMember] = Field(default_factory=list)
    score: int = 0
