"""Post-parse validation of records produced by the reasoning service.

Recovered JSON is untrusted: fields may be missing, misspelled, camelCased
or out of range. Each ``coerce_*`` helper maps a raw dict onto the domain
model, falling back to documented defaults instead of failing the turn.
"""

import logging
from typing import Any

from .models import (
    Choice,
    Difficulty,
    Event,
    EventContext,
    EventType,
    NarrationBundle,
    Quest,
    RiskLevel,
    TeamMember,
)
from .utils import new_id

logger = logging.getLogger(__name__)

POSITIONAL_RISKS = [RiskLevel.safe, RiskLevel.moderate, RiskLevel.risky, RiskLevel.moderate]
EVENT_TYPE_ALIASES = {"poke_center": EventType.rest_stop, "pokecenter": EventType.rest_stop}
MIN_CHOICES = 2
MAX_CHOICES = 4


def _pick(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def _text(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def coerce_difficulty(value: Any) -> Difficulty:
    text = str(value or "").strip().lower()
    if text in ("easy", "normal", "hard"):
        return text  # type: ignore[return-value]
    return "normal"


def coerce_event_type(value: Any) -> EventType:
    text = str(value or "").strip().lower().replace(" ", "_").replace("-", "_")
    if text in EVENT_TYPE_ALIASES:
        return EVENT_TYPE_ALIASES[text]
    try:
        return EventType(text)
    except ValueError:
        logger.warning("Unknown event type %r, using narrative_choice", value)
        return EventType.narrative_choice


def coerce_types(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return ["normal"]
    cleaned = [str(t).strip().lower() for t in value if str(t).strip()]
    return cleaned or ["normal"]


def coerce_quest(raw: dict[str, Any], *, difficulty: Difficulty | None = None, target_steps: int | None = None) -> Quest:
    steps = _int_or_none(_pick(raw, "target_steps", "targetSteps", "steps"))
    if target_steps is not None:
        steps = target_steps
    return Quest(
        title=_text(_pick(raw, "title"), "Adventure Quest"),
        description=_text(_pick(raw, "description"), "A mysterious adventure awaits..."),
        objective=_text(_pick(raw, "objective"), "Complete the journey"),
        difficulty=difficulty or coerce_difficulty(_pick(raw, "difficulty")),
        target_steps=_clamp(steps if steps is not None else 8, 4, 16),
    )


def coerce_event(raw: dict[str, Any], *, step: int, event_seed: int, target_steps: int = 8) -> Event:
    """Build an ``Event`` for ``step``; the seed always comes from the caller."""

    context_raw = _pick(raw, "context")
    if not isinstance(context_raw, dict):
        context_raw = {}
    level = _int_or_none(_pick(context_raw, "enemy_level", "enemyLevel"))
    critical = _pick(context_raw, "mission_critical", "missionCritical")
    enemy_name = _pick(context_raw, "enemy_name", "enemyName")
    context = EventContext(
        enemy_name=_text(enemy_name, "") or None,
        enemy_level=_clamp(level, 1, 100) if level is not None else None,
        enemy_types=coerce_types(_pick(context_raw, "enemy_types", "enemyTypes")),
        item_reward=_text(_pick(context_raw, "item_reward", "itemReward"), "") or None,
        location=_text(_pick(context_raw, "location"), "a remote route"),
        npc_name=_text(_pick(context_raw, "npc_name", "npcName"), "") or None,
        quest_relevance=_text(_pick(context_raw, "quest_relevance", "questRelevance"), "Part of the quest journey"),
        mission_critical=bool(critical) if isinstance(critical, bool) else step >= target_steps,
    )
    return Event(
        id=new_id(f"evt_{step}"),
        step=step,
        type=coerce_event_type(_pick(raw, "type", "event_type", "eventType")),
        difficulty=coerce_difficulty(_pick(raw, "difficulty")),
        scene=_text(_pick(raw, "scene"), f"A wild encounter appears at step {step}!"),
        context=context,
        event_seed=event_seed,
    )


def coerce_risk(value: Any, position: int) -> RiskLevel:
    text = str(value or "").strip().upper()
    try:
        return RiskLevel(text)
    except ValueError:
        return POSITIONAL_RISKS[position % len(POSITIONAL_RISKS)]


def fallback_choices(team: list[TeamMember]) -> list[Choice]:
    """Deterministic safe/risky pair built from the alive team."""

    alive = [m.id for m in team if not m.fainted]
    lead = alive[:1]
    return [
        Choice(
            risk=RiskLevel.safe,
            label="Play it safe",
            description="Hold back and look for a careful approach.",
            affected_members=lead,
            potential_consequences="Little reward, little danger.",
        ),
        Choice(
            risk=RiskLevel.risky,
            label="Go all in",
            description="Commit the whole team to a bold move.",
            affected_members=alive,
            potential_consequences="High reward, real danger.",
        ),
    ]


def coerce_choices(raw: dict[str, Any], team: list[TeamMember]) -> list[Choice]:
    """Return between two and four choices; member ids are filtered to the team."""

    items = _pick(raw, "choices")
    if not isinstance(items, list):
        items = []
    team_ids = {m.id for m in team}
    choices: list[Choice] = []
    for position, item in enumerate(items[:MAX_CHOICES]):
        if not isinstance(item, dict):
            logger.warning("Dropping malformed choice at index %s", position)
            continue
        risk = coerce_risk(_pick(item, "risk", "risk_level", "riskLevel"), position)
        members = _pick(item, "affected_members", "affectedMembers", "affectedPokemon")
        ids = [_int_or_none(x) for x in members] if isinstance(members, list) else []
        consequences = _text(_pick(item, "potential_consequences", "potentialConsequences"), "")
        choices.append(
            Choice(
                risk=risk,
                label=_text(_pick(item, "label"), f"{risk.value.lower()} approach"),
                description=_text(_pick(item, "description"), "Player action"),
                affected_members=[x for x in ids if x is not None and x in team_ids],
                potential_consequences=consequences or None,
            )
        )
    if len(choices) < MIN_CHOICES:
        logger.warning("Only %s usable choice(s), padding with fallbacks", len(choices))
        for fallback in fallback_choices(team):
            if len(choices) >= MIN_CHOICES:
                break
            choices.append(fallback)
    return choices


def coerce_narration(raw: dict[str, Any], *, default_narration: str | None = None) -> NarrationBundle:
    highlights = _pick(raw, "state_highlights", "stateHighlights")
    if not isinstance(highlights, list):
        highlights = []
    return NarrationBundle(
        narration=_text(_pick(raw, "narration", "outcome_narration", "outcomeNarration"), default_narration or "The action concludes..."),
        state_highlights=[str(h).strip() for h in highlights if str(h).strip()],
        quest_progress=_text(_pick(raw, "quest_progress", "questProgress"), "The quest continues..."),
        next_hook=_text(_pick(raw, "next_hook", "nextHook"), "The adventure continues..."),
    )
