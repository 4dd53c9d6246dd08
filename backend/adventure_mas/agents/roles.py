"""Concrete agent roles for an adventure session.

The quest designer, choice designer and narrator generate content through
the reasoning service. The validator never calls it: every verdict comes
from the rules engine and the analysis helpers.
"""

import logging
from typing import Any

from ..analysis import estimate_battle_outcome, simulate_turn_outcome, team_status, type_effectiveness_label
from ..bus import BROADCAST, MessageKind, Priority
from ..models import BATTLE_EVENTS, Choice, ChoiceValidation, Event, EventType, NarrativeStyle, SessionState, TeamMember
from ..payloads import Alert, NegotiationRound, VoteRequest
from ..records import coerce_choices, coerce_event, coerce_narration, coerce_quest
from ..rules import (
    average_team_power,
    calculate_enemy_level,
    derive_event_seed,
    enemy_power,
    select_event_type,
    team_knocked_out,
)
from . import prompts
from .adapters.base import CompletionAdapter
from .base import ActionType, AgentAction, AgentProfile, BaseAgent

logger = logging.getLogger(__name__)

QUEST_DESIGNER = "quest_designer"
CHOICE_DESIGNER = "choice_designer"
VALIDATOR = "validator"
NARRATOR = "narrator"

_RISK_RANK = {"SAFE": 0, "MODERATE": 1, "RISKY": 2}
_RECOVERY_WORDS = ("rest", "heal", "safe", "retreat")


def _require_state(agent: BaseAgent) -> SessionState:
    perception = agent.perception
    if perception is None or perception.state is None:
        raise ValueError(f"{agent.name} needs a session state for this task")
    return perception.state


def _previous(context: dict[str, Any], agent_name: str, key: str) -> Any:
    output = context.get("previous_results", {}).get(agent_name)
    if isinstance(output, dict):
        return output.get(key)
    return None


class QuestDesigner(BaseAgent):
    """Designs the quest line and one event per step."""

    tasks = frozenset({"generate_quest", "generate_event"})

    def __init__(self, bus, adapter: CompletionAdapter, memory_size: int | None = None) -> None:
        profile = AgentProfile(
            name=QUEST_DESIGNER,
            role="Quest architect and world builder",
            expertise=("quest_design", "world_building", "event_generation", "pacing"),
            voting_weight=1.5,
            can_initiate=True,
            temperature=0.8,
            max_tokens=700,
        )
        super().__init__(profile, bus, adapter, memory_size)

    async def handle_task(self, task: str, context: dict[str, Any]) -> dict[str, Any]:
        if task == "generate_quest":
            return await self._generate_quest(context)
        return await self._generate_event(context)

    async def _generate_quest(self, context: dict[str, Any]) -> dict[str, Any]:
        team = [TeamMember.model_validate(m) for m in context["team"]]
        style = NarrativeStyle(context.get("style", "serious"))
        difficulty = context.get("difficulty", "normal")
        target_steps = int(context.get("target_steps", 8))
        prompt = prompts.quest_prompt(
            team,
            style,
            difficulty,
            target_steps,
            context.get("language", "en"),
            context.get("flavour"),
        )
        raw = await self.complete_json(prompt)
        quest = coerce_quest(raw, difficulty=difficulty, target_steps=target_steps)
        logger.info("Quest designed: %s (%s steps)", quest.title, quest.target_steps)
        return {"quest": quest}

    async def _generate_event(self, context: dict[str, Any]) -> dict[str, Any]:
        state = _require_state(self)
        if team_knocked_out(state.team):
            logger.info("Team knocked out, stopping event pipeline")
            return {"stop_pipeline": True, "reason": "team knocked out"}

        step = state.current_step + 1
        target = state.quest.target_steps
        event_seed = derive_event_seed(state.seed, step)
        suggested, _ = select_event_type(step, event_seed)
        if step >= target:
            suggested = EventType.boss
        level = calculate_enemy_level(average_team_power(state.team), step, state.quest.difficulty, event_seed)
        prompt = prompts.event_prompt(state, step, suggested, level, step >= target, context.get("memories"))

        raw = await self.complete_json(prompt)
        event = coerce_event(raw, step=step, event_seed=event_seed, target_steps=target)
        if event.context.enemy_level is None and (event.type in BATTLE_EVENTS or event.type == EventType.capture):
            event = event.model_copy(update={"context": event.context.model_copy(update={"enemy_level": level})})
        return {"event": event}

    async def choose_vote(self, request: VoteRequest) -> tuple[str, float, str]:
        tension = request.context.get("tension_level")
        if tension is None and self.perception and self.perception.state:
            tension = self.perception.state.tension_level
        if tension is not None:
            if tension >= 2 and "boss" in request.options:
                return "boss", 0.9, "High tension calls for a major encounter"
            if tension <= 1 and "rest_stop" in request.options:
                return "rest_stop", 0.8, "Low tension, allow recovery"
        return request.options[0], 0.5, "First option by default"


class ChoiceDesigner(BaseAgent):
    tasks = frozenset({"generate_choices"})

    def __init__(self, bus, adapter: CompletionAdapter, memory_size: int | None = None) -> None:
        profile = AgentProfile(
            name=CHOICE_DESIGNER,
            role="Tactical choice designer",
            expertise=("choice_design", "strategy", "tactics", "team_analysis"),
            voting_weight=1.2,
            temperature=0.7,
            max_tokens=800,
        )
        super().__init__(profile, bus, adapter, memory_size)

    async def handle_task(self, task: str, context: dict[str, Any]) -> dict[str, Any]:
        state = _require_state(self)
        event = Event.model_validate(context.get("event") or _previous(context, QUEST_DESIGNER, "event"))
        raw = await self.complete_json(prompts.choices_prompt(state, event))
        choices = coerce_choices(raw, state.team)
        narration = raw.get("narration")
        progress = raw.get("quest_progress") or raw.get("questProgress")
        return {
            "event": event,
            "narration": narration.strip() if isinstance(narration, str) and narration.strip() else event.scene,
            "quest_progress": progress if isinstance(progress, str) else "",
            "choices": choices,
        }

    async def choose_vote(self, request: VoteRequest) -> tuple[str, float, str]:
        return request.options[0], 0.7, "Tactical preference based on team composition"


class Validator(BaseAgent):
    """Rules-backed reviewer; raises a critical alert when the team is in danger."""

    tasks = frozenset({"validate_choices"})

    def __init__(self, bus, memory_size: int | None = None) -> None:
        profile = AgentProfile(
            name=VALIDATOR,
            role="Tactical validator and risk analyst",
            expertise=("validation", "risk_analysis", "type_effectiveness", "battle_simulation", "team_health"),
            voting_weight=1.3,
            temperature=0.3,
            max_tokens=500,
        )
        super().__init__(profile, bus, None, memory_size)
        self._alerted_steps: set[int] = set()

    async def handle_task(self, task: str, context: dict[str, Any]) -> dict[str, Any]:
        state = _require_state(self)
        event_data = context.get("event") or _previous(context, CHOICE_DESIGNER, "event")
        event = Event.model_validate(event_data) if event_data is not None else None
        raw_choices = context.get("choices") or _previous(context, CHOICE_DESIGNER, "choices") or []
        choices = [Choice.model_validate(c) for c in raw_choices]
        validations = [validate_choice(choice, state.team, event) for choice in choices]
        valid = sum(1 for v in validations if v.is_valid)
        logger.info("Validated %s choice(s): %s valid", len(validations), valid)
        return {"validations": validations}

    def idle_action(self) -> AgentAction | None:
        state = self.perception.state if self.perception else None
        if state is None or state.current_step in self._alerted_steps:
            return super().idle_action()
        status = team_status(state.team)
        if status["health_status"] != "critical":
            return super().idle_action()
        self._alerted_steps.add(state.current_step)
        logger.warning("Team health critical at step %s (%s alive)", state.current_step, status["alive"])
        alert = Alert(
            level="critical",
            subject="team_health",
            message="CRITICAL: Team health is critical. Recommend healing or defensive strategies.",
            data=status,
        )
        return AgentAction(
            ActionType.message,
            {"recipient": BROADCAST, "kind": MessageKind.broadcast, "payload": alert, "priority": Priority.critical},
            1.0,
            "Team in critical condition, broadcasting warning",
        )

    async def choose_vote(self, request: VoteRequest) -> tuple[str, float, str]:
        state = self.perception.state if self.perception else None
        if state is not None:
            health = team_status(state.team)["health_status"]
            if health in ("critical", "low"):
                for option in request.options:
                    if any(word in option.lower() for word in _RECOVERY_WORDS):
                        return option, 0.9, f"Team health is {health}, favour recovery"
        return request.options[0], 0.6, "No safety concern"

    def review(self, negotiation: NegotiationRound) -> dict[str, Any]:
        ranks = [_RISK_RANK.get(str(p.get("proposal", {}).get("risk", "")).upper(), 1) for p in negotiation.proposals]
        preferred = ranks.index(min(ranks))
        proposal = dict(negotiation.proposals[preferred].get("proposal", {}))
        if ranks[preferred] < _RISK_RANK["RISKY"]:
            return {"agrees": True, "preferred_proposal": preferred, "revised_proposal": None}
        proposal["risk"] = "MODERATE"
        return {"agrees": False, "preferred_proposal": preferred, "revised_proposal": proposal}


def validate_choice(choice: Choice, team: list[TeamMember], event: Event | None) -> ChoiceValidation:
    """Rules-backed verdict for one choice; warnings never abort the turn."""

    warnings: list[str] = []
    flags: list[str] = []
    alive = {m.id: m for m in team if not m.fainted}
    if any(member_id not in alive for member_id in choice.affected_members):
        warnings.append("Cannot use fainted member")
    blocked = bool(warnings)

    affected = [alive[i] for i in choice.affected_members if i in alive]
    if choice.risk == "RISKY":
        if not choice.affected_members:
            warnings.append("Risky action without assigned members")
        if any(m.current_health < m.max_health * 0.3 for m in affected):
            warnings.append("Low health member in risky action")

    advantage = disadvantage = False
    primary = affected[0] if affected else next(iter(alive.values()), None)
    if event is not None and primary is not None and event.type in BATTLE_EVENTS:
        foe_types = event.context.enemy_types
        for own_type in primary.types:
            label = type_effectiveness_label(own_type, foe_types)
            if label["multiplier"] > 1:
                advantage = True
                warnings.append(f"Type advantage: {label['description']}")
            elif label["multiplier"] < 1:
                disadvantage = True
                warnings.append(f"Type disadvantage: {label['description']}")

        foe = enemy_power(event.context.enemy_level)
        simulated = simulate_turn_outcome("attack", primary, foe, foe_types, choice.risk)
        estimate = estimate_battle_outcome(primary, foe, foe_types)
        if simulated["ko_risk"] > 0.7:
            flags.append(f"High knockout risk ({round(simulated['ko_risk'] * 100)}%)")
        if estimate["win_probability"] < 0.35:
            flags.append(f"Low win chance ({round(estimate['win_probability'] * 100)}%)")
        warnings.extend(flags)
        warnings.append(f"Win chance: {round(estimate['win_probability'] * 100)}%")

    is_valid = not blocked and (advantage or (not flags and not disadvantage))
    adjusted = None
    if not is_valid:
        adjusted = "; ".join(w for w in warnings if not w.startswith("Win chance")) or None
    return ChoiceValidation(choice=choice, is_valid=is_valid, warnings=warnings, adjusted_consequences=adjusted)


class Narrator(BaseAgent):
    tasks = frozenset({"narrate_outcome"})

    def __init__(self, bus, adapter: CompletionAdapter, memory_size: int | None = None) -> None:
        profile = AgentProfile(
            name=NARRATOR,
            role="Outcome storyteller and chronicler",
            expertise=("narration", "storytelling", "outcome_description"),
            voting_weight=0.8,
            temperature=0.75,
            max_tokens=500,
        )
        super().__init__(profile, bus, adapter, memory_size)

    async def handle_task(self, task: str, context: dict[str, Any]) -> dict[str, Any]:
        state = _require_state(self)
        event = Event.model_validate(context["event"])
        choice = Choice.model_validate(context["choice"])
        mechanics = context["mechanics"]
        raw = await self.complete_json(prompts.narration_prompt(state, event, choice, mechanics))
        bundle = coerce_narration(raw)
        if not bundle.state_highlights:
            sign = "+" if mechanics["score_delta"] >= 0 else ""
            bundle = bundle.model_copy(update={"state_highlights": [f"Score {sign}{mechanics['score_delta']}"]})
        return {"narration": bundle}

    async def choose_vote(self, request: VoteRequest) -> tuple[str, float, str]:
        return request.options[0], 0.6, "Keeps the story moving"


def build_agents(bus, adapter: CompletionAdapter, memory_size: int | None = None) -> list[BaseAgent]:
    """Default roster registered for every adventure session."""

    return [
        QuestDesigner(bus, adapter, memory_size),
        ChoiceDesigner(bus, adapter, memory_size),
        Validator(bus, memory_size),
        Narrator(bus, adapter, memory_size),
    ]
