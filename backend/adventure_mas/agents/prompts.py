"""Prompt builders for the generating roles.

Every prompt starts with a ``RECORD:`` marker naming the JSON record it
asks for, followed by ``KEY: value`` fact lines. Prompt wording is not
load-bearing; the marker and fact lines are, since the offline adapter
reads them back.
"""

from typing import Any

from ..analysis import (
    narrative_tension,
    predict_team_survival,
    quest_branch_options,
    quest_progress,
    rank_team_for_quest,
    team_status,
)
from ..models import Choice, Event, EventType, NarrativeStyle, Quest, SessionState, TeamMember

STYLE_GUIDES = {
    NarrativeStyle.serious: "dramatic and high-stakes, with real consequences",
    NarrativeStyle.humor: "lighthearted and quirky, with comedic situations",
    NarrativeStyle.epic: "grandiose and legendary, of epic proportions",
}


def _language_line(language: str) -> str:
    return "Réponds EN FRANÇAIS uniquement." if language == "fr" else "Respond ONLY in ENGLISH."


def _team_line(team: list[TeamMember]) -> str:
    return ", ".join(f"{m.name} ({'/'.join(m.types)}, {m.current_health}/{m.max_health} HP)" for m in team)


def quest_prompt(
    team: list[TeamMember],
    style: NarrativeStyle,
    difficulty: str,
    target_steps: int,
    language: str,
    flavour: list[str] | None = None,
) -> str:
    lines = [
        "RECORD: quest",
        f"TEAM: {_team_line(team)}",
        f"STYLE: {style.value} - {STYLE_GUIDES[style]}",
        f"DIFFICULTY: {difficulty}",
        f"TARGET STEPS: {target_steps}",
    ]
    if flavour:
        lines.append("TEAM LORE: " + " | ".join(flavour))
    lines += [
        "",
        f"Design a coherent main quest line of {target_steps} steps for this team.",
        _language_line(language),
        "",
        "Respond with this JSON only:",
        '{"title": "<quest title>", "description": "<2-3 sentences>", "objective": "<clear goal>",'
        f' "difficulty": "{difficulty}", "target_steps": {target_steps}}}',
    ]
    return "\n".join(lines)


def event_prompt(
    state: SessionState,
    step: int,
    suggested: EventType,
    enemy_level: int,
    mission_critical: bool,
    memories: list[str] | None = None,
) -> str:
    progress = quest_progress(step, state.quest.target_steps)
    status = team_status(state.team)
    fainted = sum(1 for m in state.team if m.fainted)
    tension = narrative_tension(step, state.defeated_count, fainted)
    survival = predict_team_survival(state.team, progress["steps_remaining"])
    branches = quest_branch_options(state.quest, step)
    lines = [
        "RECORD: event",
        f"QUEST: {state.quest.title} - {state.quest.objective}",
        f"STEP: {step}/{state.quest.target_steps} ({progress['phase']})",
        f"STYLE: {state.narrative_style.value}",
        f"DIFFICULTY: {state.quest.difficulty}",
        f"TEAM STATUS: {status['health_status']} ({status['alive']}/{len(state.team)} alive)",
        f"TENSION: {tension['tension_level']}/3 - {tension['note']}",
        f"SURVIVAL: {round(survival['survival_probability'] * 100)}%",
        f"SUGGESTED EVENT: {suggested.value}",
        f"ENEMY LEVEL: {enemy_level}",
        f"MISSION CRITICAL: {str(mission_critical).lower()}",
        "SIDE BRANCHES: " + "; ".join(b["title"] for b in branches),
    ]
    if memories:
        lines.append("RECENT: " + " | ".join(memories))
    lines += [
        "",
        "Generate an event that advances the quest.",
        _language_line(state.language),
        "",
        "Respond with this JSON only:",
        '{"type": "<event type>", "difficulty": "easy|normal|hard", "scene": "<4-6 sentences>",'
        ' "context": {"enemy_name": "<name>", "enemy_level": <level>, "enemy_types": ["<type>"],'
        ' "location": "<place>", "quest_relevance": "<link to quest>", "mission_critical": <bool>}}',
    ]
    return "\n".join(lines)


def choices_prompt(state: SessionState, event: Event) -> str:
    status = team_status(state.team)
    ranked = rank_team_for_quest(state.team, event.context.enemy_types)
    picks = ", ".join(item["name"] for item in ranked[:2])
    ids = ",".join(str(m.id) for m in state.team if not m.fainted)
    lines = [
        "RECORD: choices",
        f"QUEST: {state.quest.title} - step {event.step}/{state.quest.target_steps}",
        f"EVENT TYPE: {event.type.value}",
        f"SCENE: {event.scene}",
        f"TEAM STATUS: {status['health_status']} ({status['alive']}/{len(state.team)} alive)",
        f"TOP PICKS: {picks}",
        f"TEAM IDS: {ids}",
        "",
        f"Create 2-4 choices in a {state.narrative_style.value} style naming specific team members.",
        _language_line(state.language),
        "",
        "Respond with this JSON only:",
        '{"narration": "<3-4 sentences>", "quest_progress": "<relation to quest>", "choices": ['
        '{"risk": "SAFE|MODERATE|RISKY", "label": "<title>", "description": "<action>",'
        f' "affected_members": [<ids from {ids}>], "potential_consequences": "<risk>"}}]}}',
    ]
    return "\n".join(lines)


def narration_prompt(state: SessionState, event: Event, choice: Choice, mechanics: dict[str, Any]) -> str:
    sign = "+" if mechanics["score_delta"] >= 0 else ""
    lines = [
        "RECORD: narration",
        f"QUEST: {state.quest.title} - step {event.step}",
        f"STYLE: {state.narrative_style.value}",
        f"ACTION: {choice.label}",
        f"OUTCOME: {'Success' if mechanics['success'] else 'Failure'}",
        f"SCORE: {sign}{mechanics['score_delta']}",
        f"HEALTH LOST: {mechanics['health_lost']}",
        "",
        "Write a 3-4 sentence narration of the outcome.",
        _language_line(state.language),
        "",
        "Respond with this JSON only:",
        '{"narration": "<narrative>", "state_highlights": ["<highlight>"],'
        ' "quest_progress": "<quest impact>", "next_hook": "<teaser>"}',
    ]
    return "\n".join(lines)


def record_kind(prompt: str) -> str | None:
    """Return the record marker of a prompt built by this module."""

    first = prompt.lstrip().split("\n", 1)[0]
    if first.startswith("RECORD:"):
        return first.split(":", 1)[1].strip()
    return None


def fact(prompt: str, key: str) -> str | None:
    prefix = f"{key}:"
    for line in prompt.splitlines():
        if line.startswith(prefix):
            return line[len(prefix) :].strip()
    return None
