"""Deterministic analysis helpers shared by prompts and the validator.

Each helper summarizes game state into a small dict (team health, quest
phase, battle odds, tension) so that agents reason over stable numbers
instead of recomputing them from raw state.
"""

from typing import Any

from .models import Choice, Outcome, Quest, RiskLevel, SessionState, TeamMember
from .rules import member_power, type_effectiveness


def type_effectiveness_label(attack_type: str, defender_types: list[str]) -> dict[str, Any]:
    multiplier = type_effectiveness(attack_type, defender_types)
    if multiplier == 0:
        description = "No effect!"
    elif multiplier >= 4:
        description = "Super effective! (4x)"
    elif multiplier >= 2:
        description = "Super effective! (2x)"
    elif multiplier <= 0.25:
        description = "Not very effective... (0.25x)"
    elif multiplier <= 0.5:
        description = "Not very effective... (0.5x)"
    else:
        description = "Normal damage"
    return {"multiplier": multiplier, "description": description}


def team_status(team: list[TeamMember]) -> dict[str, Any]:
    """Aggregate health summary; ``health_status`` drives validator alerts."""

    alive = sum(1 for m in team if not m.fainted)
    total_hp = sum(m.current_health for m in team)
    max_total_hp = sum(m.max_health for m in team)
    avg_power = max(1, round(max_total_hp / len(team) / 20)) if team else 1
    hp_percent = total_hp / max_total_hp if max_total_hp else 0.0

    if hp_percent < 0.25 or alive <= 1:
        health_status = "critical"
    elif hp_percent < 0.5 or alive <= 2:
        health_status = "low"
    elif hp_percent < 0.75:
        health_status = "good"
    else:
        health_status = "excellent"
    return {
        "alive": alive,
        "total_hp": total_hp,
        "max_total_hp": max_total_hp,
        "avg_power": avg_power,
        "health_status": health_status,
    }


def quest_progress(current_step: int, total_steps: int) -> dict[str, Any]:
    total = max(1, total_steps)
    if current_step >= total:
        phase = "final"
    elif current_step >= total * 0.75:
        phase = "late"
    elif current_step >= total * 0.4:
        phase = "middle"
    else:
        phase = "early"
    return {
        "percent": round(current_step / total * 100),
        "phase": phase,
        "steps_remaining": max(0, total - current_step),
    }


def estimate_battle_outcome(member: TeamMember, foe_power: int, foe_types: list[str] | None = None) -> dict[str, Any]:
    """Coarse win probability from power gap, remaining health and typing."""

    foe_types = foe_types or ["normal"]
    gap = member_power(member) - foe_power
    if gap >= 5:
        probability = 0.8
    elif gap >= 2:
        probability = 0.65
    elif gap <= -5:
        probability = 0.2
    elif gap <= -2:
        probability = 0.35
    else:
        probability = 0.5

    hp_ratio = member.current_health / member.max_health
    if hp_ratio < 0.3:
        probability *= 0.6
    elif hp_ratio < 0.5:
        probability *= 0.8

    advantage = 0.0
    for own_type in member.types:
        multiplier = type_effectiveness(own_type, foe_types)
        if multiplier > 1:
            advantage += 0.1
        if multiplier < 1:
            advantage -= 0.1
    probability = max(0.05, min(0.95, probability + advantage))

    percent = round(probability * 100)
    if probability >= 0.7:
        action, reasoning = "ATTACK", f"Strong advantage ({percent}% win chance)"
    elif probability >= 0.4:
        action, reasoning = "MODERATE", f"Even match ({percent}% win chance)"
    else:
        action, reasoning = "DEFEND", f"Risky battle ({percent}% win chance) - consider switching"
    return {"win_probability": probability, "recommended_action": action, "reasoning": reasoning}


def simulate_turn_outcome(
    action: str,
    member: TeamMember,
    foe_power: int,
    foe_types: list[str],
    risk: RiskLevel,
) -> dict[str, Any]:
    power_ratio = member_power(member) / max(1, foe_power)
    best_multiplier = 1.0
    for own_type in member.types:
        best_multiplier = max(best_multiplier, type_effectiveness(own_type, foe_types))

    risk = RiskLevel(risk)
    risk_bonus = {RiskLevel.risky: 0.15, RiskLevel.safe: -0.1}.get(risk, 0.0)
    win = 0.45 + (power_ratio - 1) * 0.2 + (best_multiplier - 1) * 0.2
    win = max(0.05, min(0.95, win + risk_bonus))

    action_mod = {"defend": 0.7, "support": 0.85}.get(action, 1.0)
    risk_mod = {RiskLevel.risky: 1.2, RiskLevel.safe: 0.85}.get(risk, 1.0)
    expected_damage = round(foe_power * 6 * action_mod * risk_mod)
    ko_risk = max(0.0, min(1.0, expected_damage / max(1, member.current_health)))
    score_expected = round(win * 30 + (5 if best_multiplier > 1 else 0) - ko_risk * 15)
    return {
        "win_probability": win,
        "expected_damage": expected_damage,
        "ko_risk": ko_risk,
        "score_expected": score_expected,
    }


def rank_team_for_quest(
    team: list[TeamMember],
    foe_types: list[str] | None = None,
    required_role: str | None = None,
) -> list[dict[str, Any]]:
    ranked: list[dict[str, Any]] = []
    for member in team:
        reasons: list[str] = []
        hp_ratio = member.current_health / max(1, member.max_health)
        score = hp_ratio * 30
        if foe_types:
            type_score = 0
            for own_type in member.types:
                multiplier = type_effectiveness(own_type, foe_types)
                if multiplier > 1:
                    type_score += 20
                if multiplier < 1:
                    type_score -= 10
            score += type_score
            if type_score > 0:
                reasons.append("Type advantage")
        if required_role == "defense" and hp_ratio > 0.7:
            score += 10
            reasons.append("High endurance")
        if required_role == "attack" and member.types:
            score += 5
            reasons.append("Offensive role")
        if member.fainted:
            score -= 50
            reasons.append("Fainted")
        ranked.append({"id": member.id, "name": member.name, "score": score, "reasons": reasons})
    return sorted(ranked, key=lambda item: item["score"], reverse=True)


def predict_team_survival(team: list[TeamMember], steps_remaining: int) -> dict[str, Any]:
    alive = sum(1 for m in team if not m.fainted)
    total_hp = sum(m.current_health for m in team)
    max_hp = sum(m.max_health for m in team)
    hp_ratio = total_hp / max_hp if max_hp else 0.0
    alive_ratio = alive / len(team) if team else 0.0

    survival = 0.2 + hp_ratio * 0.6 + alive_ratio * 0.2 - steps_remaining * 0.05
    survival = max(0.05, min(0.95, survival))
    heal_priority = [m.id for m in sorted(team, key=lambda m: m.current_health / m.max_health)]
    if survival < 0.35:
        recommendation = "Seek healing or reduce risk"
    elif survival < 0.6:
        recommendation = "Play cautiously"
    else:
        recommendation = "You can take moderate risks"
    return {
        "survival_probability": survival,
        "expected_kos": max(0, round((1 - hp_ratio) * len(team) * 0.6)),
        "heal_priority": heal_priority,
        "recommendation": recommendation,
    }


def narrative_tension(step: int, victories: int, failures: int) -> dict[str, Any]:
    tension = max(0, min(3, round(step / 8 * 3 + failures * 0.6 - victories * 0.3)))
    recommended = {3: "boss", 2: "trainer_battle", 1: "wild_battle"}.get(tension, "narrative_choice")
    if tension >= 3:
        note = "High stakes moment"
    elif tension == 0:
        note = "Give the player breathing room"
    else:
        note = "Maintain steady pressure"
    return {"tension_level": tension, "recommended_event": recommended, "note": note}


_BRANCHES = [
    ("Side Detour", "Help a local trainer to gain supplies before continuing.", "easy", "Healing items", "low"),
    ("Direct Assault", "Press forward toward the objective without delay.", None, "Time advantage", "high"),
    ("Intel Gathering", "Investigate clues about the mission before engaging.", "normal", "Tactical info", "medium"),
    ("Escort Mission", "Protect a key NPC who can assist the main quest.", "normal", "Alliance support", "medium"),
]


def quest_branch_options(quest: Quest, current_step: int) -> list[dict[str, Any]]:
    """Two or three side-branch ideas rotated by step; even steps get three."""

    start = current_step % len(_BRANCHES)
    count = 3 if current_step % 2 == 0 else 2
    options: list[dict[str, Any]] = []
    for offset in range(count):
        title, description, difficulty, reward, risk = _BRANCHES[(start + offset) % len(_BRANCHES)]
        options.append(
            {
                "title": f"{title} ({quest.title})",
                "description": description,
                "difficulty": difficulty or quest.difficulty,
                "reward": reward,
                "risk_level": risk,
            }
        )
    return options


def evaluate_decision_quality(choice: Choice, outcome: Outcome) -> dict[str, Any]:
    strategy = 50
    narrative = 50
    reasons: list[str] = []
    if choice.risk == RiskLevel.risky and outcome.success:
        strategy += 15
        narrative += 10
        reasons.append("High risk paid off")
    elif choice.risk == RiskLevel.risky:
        strategy -= 15
        reasons.append("High risk failed")

    if outcome.score_delta > 0:
        strategy += min(20, outcome.score_delta // 5)
    else:
        strategy += max(-20, outcome.score_delta // 5)
    if outcome.health_lost > 30:
        narrative += 5
        reasons.append("Tense moment")

    if strategy >= 55:
        alignment = "good"
    elif strategy <= 45:
        alignment = "bad"
    else:
        alignment = "neutral"
    return {
        "score": max(0, min(100, round((strategy + narrative) / 2))),
        "strategy_score": strategy,
        "narrative_score": narrative,
        "risk_alignment": alignment,
        "reasons": reasons,
    }


def estimate_steps_to_failure(state: SessionState) -> dict[str, Any]:
    total_hp = sum(m.current_health for m in state.team)
    max_hp = max(1, sum(m.max_health for m in state.team))
    hp_ratio = total_hp / max_hp
    if hp_ratio < 0.25:
        danger = "critical"
        recommendation = "Urgent healing or avoid combat"
    elif hp_ratio < 0.45:
        danger = "high"
        recommendation = "Reduce risk and seek recovery"
    elif hp_ratio < 0.7:
        danger = "medium"
        recommendation = "Stable"
    else:
        danger = "low"
        recommendation = "Stable"
    return {
        "steps_until_failure": max(1, round(hp_ratio * 6)),
        "danger_level": danger,
        "recommendation": recommendation,
    }
