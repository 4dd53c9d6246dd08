"""Post-parse record coercion tests."""

from adventure_mas.models import EventType, RiskLevel, TeamMember
from adventure_mas.records import (
    coerce_choices,
    coerce_event,
    coerce_narration,
    coerce_quest,
    coerce_risk,
)


def test_quest_defaults_and_step_clamp():
    quest = coerce_quest({"difficulty": "impossible", "target_steps": 40})
    assert quest.title == "Adventure Quest"
    assert quest.difficulty == "normal"
    assert quest.target_steps == 16

    short = coerce_quest({"title": "  Short  ", "targetSteps": "2"})
    assert short.title == "Short"
    assert short.target_steps == 4


def test_quest_caller_values_win():
    quest = coerce_quest({"difficulty": "easy", "target_steps": 12}, difficulty="hard", target_steps=6)
    assert quest.difficulty == "hard"
    assert quest.target_steps == 6


def test_event_defaults():
    event = coerce_event({"type": "dragon_dance", "context": {"enemy_level": 500}}, step=3, event_seed=77)
    assert event.type == EventType.narrative_choice
    assert event.difficulty == "normal"
    assert event.step == 3
    assert event.event_seed == 77
    assert event.context.enemy_level == 100
    assert event.context.enemy_types == ["normal"]
    assert event.context.location == "a remote route"
    assert event.context.quest_relevance == "Part of the quest journey"
    assert event.context.mission_critical is False
    assert event.id.startswith("evt_3_")


def test_event_camel_case_and_aliases():
    raw = {
        "eventType": "poke_center",
        "scene": "A warm light glows ahead.",
        "context": {"enemyTypes": "Fire", "enemyLevel": "7", "missionCritical": True},
    }
    event = coerce_event(raw, step=2, event_seed=1)
    assert event.type == EventType.rest_stop
    assert event.context.enemy_types == ["fire"]
    assert event.context.enemy_level == 7
    assert event.context.mission_critical is True


def test_event_mission_critical_defaults_to_final_step():
    assert coerce_event({}, step=8, event_seed=1, target_steps=8).context.mission_critical is True
    assert coerce_event({}, step=7, event_seed=1, target_steps=8).context.mission_critical is False


def test_risk_positional_defaults():
    assert [coerce_risk("nope", i) for i in range(5)] == [
        RiskLevel.safe,
        RiskLevel.moderate,
        RiskLevel.risky,
        RiskLevel.moderate,
        RiskLevel.safe,
    ]
    assert coerce_risk("risky", 0) == RiskLevel.risky


def test_choices_filter_unknown_members(team):
    raw = {
        "choices": [
            {"risk": "SAFE", "label": "Wait", "affected_members": [25, 999]},
            {"risk": "bold", "label": "Charge", "affectedMembers": ["7", 4]},
        ]
    }
    choices = coerce_choices(raw, team)
    assert len(choices) == 2
    assert choices[0].affected_members == [25]
    assert choices[1].risk == RiskLevel.moderate
    assert choices[1].affected_members == [7, 4]


def test_choices_padded_with_fallbacks(team):
    choices = coerce_choices({"choices": ["not a dict"]}, team)
    assert len(choices) == 2
    assert choices[0].risk == RiskLevel.safe
    assert choices[1].risk == RiskLevel.risky
    assert choices[1].affected_members == [25, 7, 4]


def test_choices_capped_at_four(team):
    raw = {"choices": [{"label": f"Option {i}"} for i in range(6)]}
    choices = coerce_choices(raw, team)
    assert len(choices) == 4
    assert [c.risk for c in choices] == [RiskLevel.safe, RiskLevel.moderate, RiskLevel.risky, RiskLevel.moderate]


def test_fallbacks_skip_fainted_members():
    team = [
        TeamMember(id=1, name="Down", current_health=0, max_health=50),
        TeamMember(id=2, name="Up", current_health=10, max_health=50),
    ]
    choices = coerce_choices({}, team)
    assert choices[0].affected_members == [2]


def test_narration_accepts_alternate_keys():
    bundle = coerce_narration({"outcomeNarration": "It worked.", "stateHighlights": ["+10", " "]})
    assert bundle.narration == "It worked."
    assert bundle.state_highlights == ["+10"]
    assert bundle.next_hook == "The adventure continues..."

    empty = coerce_narration({}, default_narration="Nothing happened.")
    assert empty.narration == "Nothing happened."
