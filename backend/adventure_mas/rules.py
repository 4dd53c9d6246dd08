"""Deterministic rules engine.

Every mechanical outcome (hits, damage, captures, healing, event pacing)
is computed here from explicit inputs and an explicit seed. No reasoning
service is involved, so identical inputs always give identical results.
The functions are pure: team members are copied, never mutated, and each
call builds its own seeded stream.
"""

import math
from collections.abc import Iterator
from dataclasses import dataclass

from .errors import RulesInputError
from .models import BATTLE_EVENTS, Difficulty, Event, EventType, RiskLevel, TeamMember

LCG_MULTIPLIER = 9301
LCG_INCREMENT = 49297
LCG_MODULUS = 233280

RISK_MODIFIERS: dict[RiskLevel, dict[str, float]] = {
    RiskLevel.safe: {"hit": 0.9, "damage": 0.75, "xp": 0.8, "capture": 0.25},
    RiskLevel.moderate: {"hit": 0.75, "damage": 1.05, "xp": 1.0, "capture": 0.45},
    RiskLevel.risky: {"hit": 0.55, "damage": 1.5, "xp": 1.5, "capture": 0.70},
}
DIFFICULTY_DAMAGE: dict[str, float] = {"easy": 0.9, "normal": 1.15, "hard": 1.45}
DIFFICULTY_ENEMY_BONUS: dict[str, float] = {"easy": 0.5, "normal": 2.5, "hard": 4.0}

# Attacking type -> defending type -> multiplier; absent pairs are neutral.
TYPE_CHART: dict[str, dict[str, float]] = {
    "normal": {"rock": 0.5, "ghost": 0, "steel": 0.5},
    "fire": {"fire": 0.5, "water": 0.5, "grass": 2, "ice": 2, "bug": 2, "rock": 0.5, "dragon": 0.5, "steel": 2},
    "water": {"fire": 2, "water": 0.5, "grass": 0.5, "ground": 2, "rock": 2, "dragon": 0.5},
    "electric": {"water": 2, "electric": 0.5, "grass": 0.5, "ground": 0, "flying": 2, "dragon": 0.5},
    "grass": {
        "fire": 0.5, "water": 2, "grass": 0.5, "poison": 0.5, "ground": 2,
        "flying": 0.5, "bug": 0.5, "rock": 2, "dragon": 0.5, "steel": 0.5,
    },
    "ice": {"fire": 0.5, "water": 0.5, "grass": 2, "ice": 0.5, "ground": 2, "flying": 2, "dragon": 2, "steel": 0.5},
    "fighting": {
        "normal": 2, "ice": 2, "poison": 0.5, "flying": 0.5, "psychic": 0.5, "bug": 0.5,
        "rock": 2, "ghost": 0, "dark": 2, "steel": 2, "fairy": 0.5,
    },
    "poison": {"grass": 2, "poison": 0.5, "ground": 0.5, "rock": 0.5, "ghost": 0.5, "steel": 0, "fairy": 2},
    "ground": {"fire": 2, "electric": 2, "grass": 0.5, "poison": 2, "flying": 0, "bug": 0.5, "rock": 2, "steel": 2},
    "flying": {"electric": 0.5, "grass": 2, "fighting": 2, "bug": 2, "rock": 0.5, "steel": 0.5},
    "psychic": {"fighting": 2, "poison": 2, "psychic": 0.5, "dark": 0, "steel": 0.5},
    "bug": {
        "fire": 0.5, "grass": 2, "fighting": 0.5, "poison": 0.5, "flying": 0.5,
        "psychic": 2, "ghost": 0.5, "dark": 2, "steel": 0.5, "fairy": 0.5,
    },
    "rock": {"fire": 2, "ice": 2, "fighting": 0.5, "ground": 0.5, "flying": 2, "bug": 2, "steel": 0.5},
    "ghost": {"normal": 0, "psychic": 2, "ghost": 2, "dark": 0.5},
    "dragon": {"dragon": 2, "steel": 0.5, "fairy": 0},
    "dark": {"fighting": 0.5, "psychic": 2, "ghost": 2, "dark": 0.5, "fairy": 0.5},
    "steel": {"fire": 0.5, "water": 0.5, "electric": 0.5, "ice": 2, "rock": 2, "steel": 0.5, "fairy": 2},
    "fairy": {"fire": 0.5, "fighting": 2, "poison": 0.5, "dragon": 2, "dark": 2, "steel": 0.5},
}


@dataclass(frozen=True)
class BattleResult:
    success: bool
    damage_dealt: int
    score_delta: int
    hit_chance: float


@dataclass(frozen=True)
class CaptureResult:
    success: bool
    score_delta: int
    chance: float


@dataclass(frozen=True)
class MechanicalOutcome:
    """Rules-engine result for one resolved choice, before validator adjustments."""

    success: bool
    damage_dealt: int
    score_delta: int
    health_lost: int
    heals_team: bool = False
    captured: bool = False
    defeated: bool = False


def _require_number(name: str, value: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise RulesInputError(f"{name} must be a number, got {type(value).__name__}")
    if not math.isfinite(value):
        raise RulesInputError(f"{name} must be finite, got {value}")
    if value < 0:
        raise RulesInputError(f"{name} must not be negative, got {value}")
    return value


def seeded_sequence(seed: int) -> Iterator[float]:
    """Yield an endless reproducible stream of floats in ``[0, 1)``.

    Linear congruential generator; reproducibility is the goal, not
    unpredictability.
    """

    state = int(_require_number("seed", seed))
    while True:
        state = (state * LCG_MULTIPLIER + LCG_INCREMENT) % LCG_MODULUS
        yield state / LCG_MODULUS


def compute_battle(
    player_power: float,
    enemy_power: float,
    risk: RiskLevel,
    seed: int,
    difficulty: Difficulty,
) -> BattleResult:
    """Resolve one battle exchange.

    The first draw sets damage variance (80-120%), the second decides the
    hit against the risk-adjusted hit chance.
    """

    _require_number("player_power", player_power)
    _require_number("enemy_power", enemy_power)
    risk = RiskLevel(risk)
    modifiers = RISK_MODIFIERS[risk]
    rng = seeded_sequence(seed)

    hit_chance = min(1.0, max(0.1, 0.75 + 0.05 * (player_power - enemy_power)))
    hit_chance *= modifiers["hit"]

    base_damage = 20 + 1.8 * player_power
    variance = 0.8 + next(rng) * 0.4
    damage = math.floor(base_damage * modifiers["damage"] * DIFFICULTY_DAMAGE[difficulty] * variance)

    hit = next(rng) < hit_chance
    base_score = 30 * modifiers["xp"]
    score = max(0, math.floor(base_score - (1 - hit_chance) * 10))
    return BattleResult(
        success=hit,
        damage_dealt=damage if hit else 0,
        score_delta=score if hit else 5,
        hit_chance=hit_chance,
    )


def compute_capture(target_power: float, actor_power: float, risk: RiskLevel, seed: int) -> CaptureResult:
    _require_number("target_power", target_power)
    _require_number("actor_power", actor_power)
    risk = RiskLevel(risk)
    rng = seeded_sequence(seed)

    base_chance = 0.45 - 0.02 * target_power + 0.01 * actor_power
    chance = min(1.0, max(0.05, base_chance * RISK_MODIFIERS[risk]["capture"]))
    success = next(rng) < chance
    return CaptureResult(success=success, score_delta=40 if success else 10, chance=chance)


def apply_damage(member: TeamMember, amount: float) -> TeamMember:
    """Return a copy of ``member`` with health reduced, floored at zero."""

    _require_number("amount", amount)
    return member.model_copy(update={"current_health": max(0, member.current_health - int(amount))})


def heal_team(team: list[TeamMember]) -> list[TeamMember]:
    return [m.model_copy(update={"current_health": m.max_health}) for m in team]


def team_knocked_out(team: list[TeamMember]) -> bool:
    return all(m.current_health == 0 for m in team)


def member_power(member: TeamMember) -> int:
    return max(1, round(member.max_health / 20))


def enemy_power(enemy_level: int | None) -> int:
    level = 10 if enemy_level is None else _require_number("enemy_level", enemy_level)
    return max(1, round(level / 2))


def average_team_power(team: list[TeamMember]) -> int:
    if not team:
        return 1
    return math.floor(sum(m.max_health for m in team) / len(team) / 20)


def difficulty_for_wins(wins: int) -> Difficulty:
    if wins < 2:
        return "easy"
    if wins < 5:
        return "normal"
    return "hard"


def calculate_enemy_level(player_average: int, step: int, difficulty: Difficulty, seed: int) -> int:
    _require_number("player_average", player_average)
    _require_number("step", step)
    rng = seeded_sequence(seed)
    step_scaling = (step - 1) * 0.7
    variance = math.floor((next(rng) - 0.5) * 3)
    return max(player_average, math.floor(player_average + step_scaling + DIFFICULTY_ENEMY_BONUS[difficulty] + variance))


def select_event_type(step: int, seed: int) -> tuple[EventType, bool]:
    """Pick an event type for a step; steps 4 and 8 are always boss fights."""

    rng = seeded_sequence(seed)
    if step in (4, 8):
        return EventType.boss, True
    roll = next(rng)
    if step in (1, 2):
        return (EventType.wild_battle if roll < 0.4 else EventType.capture), False
    if step in (3, 5, 6):
        pool = [
            EventType.wild_battle,
            EventType.trainer_battle,
            EventType.capture,
            EventType.rest_stop,
            EventType.narrative_choice,
        ]
        return pool[math.floor(roll * len(pool))], False
    return (EventType.trainer_battle if roll < 0.6 else EventType.wild_battle), False


def derive_event_seed(session_seed: int, step: int) -> int:
    """Stable per-step seed so a replayed session rolls identical events."""

    _require_number("session_seed", session_seed)
    _require_number("step", step)
    return (int(session_seed) * 31 + int(step) * 7919) % 2_147_483_647


def type_effectiveness(attack_type: str, defender_types: list[str]) -> float:
    """Product of chart multipliers over the defender's types."""

    row = TYPE_CHART.get(attack_type.strip().lower(), {})
    multiplier = 1.0
    for defender in defender_types:
        multiplier *= row.get(defender.strip().lower(), 1)
    return multiplier


def resolve_mechanics(event: Event, player_power: int, foe_power: int, risk: RiskLevel) -> MechanicalOutcome:
    """Dispatch an event to the matching rule and normalize the result."""

    risk = RiskLevel(risk)
    if event.type in BATTLE_EVENTS:
        battle = compute_battle(player_power, foe_power, risk, event.event_seed, event.difficulty)
        return MechanicalOutcome(
            success=battle.success,
            damage_dealt=battle.damage_dealt,
            score_delta=battle.score_delta,
            health_lost=battle.damage_dealt,
            defeated=battle.success,
        )
    if event.type == EventType.capture:
        capture = compute_capture(foe_power, player_power, risk, event.event_seed)
        return MechanicalOutcome(
            success=capture.success,
            damage_dealt=0,
            score_delta=capture.score_delta,
            health_lost=0,
            captured=capture.success,
        )
    if event.type == EventType.rest_stop:
        return MechanicalOutcome(success=True, damage_dealt=0, score_delta=5, health_lost=0, heals_team=True)
    if event.type == EventType.narrative_choice:
        if risk == RiskLevel.risky:
            success = next(seeded_sequence(event.event_seed)) > 0.5
            return MechanicalOutcome(success=success, damage_dealt=30, score_delta=25, health_lost=30)
        return MechanicalOutcome(success=True, damage_dealt=0, score_delta=15, health_lost=0)
    return MechanicalOutcome(success=True, damage_dealt=0, score_delta=10, health_lost=0)
