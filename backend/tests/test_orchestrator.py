"""Orchestrator pipeline, round, vote and negotiation tests with the mock adapter."""

import asyncio
import logging

import pytest

from conftest import make_state

from adventure_mas.agents.adapters.mock_adapter import MockCompletionAdapter
from adventure_mas.agents.base import ActionType, AgentAction, AgentProfile, BaseAgent
from adventure_mas.agents.roles import CHOICE_DESIGNER, NARRATOR, QUEST_DESIGNER, VALIDATOR, build_agents
from adventure_mas.bus import BROADCAST, MessageBus, MessageKind
from adventure_mas.orchestrator import Orchestrator
from adventure_mas.payloads import Alert, NegotiationRound, VoteRequest
from adventure_mas.rules import apply_damage


class Chatter(BaseAgent):
    """Broadcasts one alert every time it idles."""

    def idle_action(self):
        alert = Alert(subject="chatter", message=f"hello from {self.name}")
        return AgentAction(ActionType.message, {"recipient": BROADCAST, "kind": MessageKind.broadcast, "payload": alert})


class SlowVoter(BaseAgent):
    async def choose_vote(self, request: VoteRequest):
        await asyncio.sleep(1)
        return request.options[-1], 1.0, "Took my time"


class Leaver(BaseAgent):
    """Unregisters itself while its vote is being cast."""

    orchestrator: Orchestrator | None = None

    async def choose_vote(self, request: VoteRequest):
        self.orchestrator.unregister(self.name)
        return request.options[0], 1.0, "Leaving the party"


class Stubborn(BaseAgent):
    def review(self, negotiation: NegotiationRound):
        return {"agrees": False, "preferred_proposal": 0, "revised_proposal": None}


def _profile(name: str, expertise: tuple[str, ...] = ("chatter",)) -> AgentProfile:
    return AgentProfile(name=name, role="test", expertise=expertise)


def _orchestrator() -> Orchestrator:
    orch = Orchestrator()
    for agent in build_agents(orch.bus, MockCompletionAdapter()):
        orch.register(agent)
    return orch


def test_register_rejects_duplicates_and_foreign_bus():
    orch = _orchestrator()
    with pytest.raises(ValueError):
        orch.register(build_agents(orch.bus, MockCompletionAdapter())[0])
    with pytest.raises(ValueError):
        orch.register(Chatter(_profile("outsider"), MessageBus()))
    orch.unregister(NARRATOR)
    assert NARRATOR not in orch.agents
    assert NARRATOR not in orch.bus.agents


def test_pipeline_threads_previous_results(state):
    orch = _orchestrator()
    results = asyncio.run(
        orch.run_pipeline(
            [QUEST_DESIGNER, CHOICE_DESIGNER, VALIDATOR],
            state,
            tasks={
                QUEST_DESIGNER: ("generate_event", {}),
                CHOICE_DESIGNER: ("generate_choices", {}),
                VALIDATOR: ("validate_choices", {}),
            },
        )
    )
    event = results[QUEST_DESIGNER].output["event"]
    designed = results[CHOICE_DESIGNER].output
    validations = results[VALIDATOR].output["validations"]
    assert designed["event"].id == event.id
    assert 2 <= len(designed["choices"]) <= 4
    assert [v.choice for v in validations] == designed["choices"]
    responses = [m for m in orch.history() if m.kind == MessageKind.response]
    assert len(responses) == 3


def test_pipeline_stops_when_team_is_down(state):
    orch = _orchestrator()
    down = state.model_copy(update={"team": [apply_damage(m, 999) for m in state.team]})
    results = asyncio.run(
        orch.run_pipeline(
            [QUEST_DESIGNER, CHOICE_DESIGNER],
            down,
            tasks={QUEST_DESIGNER: ("generate_event", {}), CHOICE_DESIGNER: ("generate_choices", {})},
        )
    )
    assert list(results) == [QUEST_DESIGNER]
    assert results[QUEST_DESIGNER].stop_pipeline
    assert orch.collector.logs()[-1].content == f"Pipeline stopped by {QUEST_DESIGNER}"


def test_unknown_agent_yields_none(state):
    orch = _orchestrator()
    assert asyncio.run(orch.run_agent("ghost", state)) is None


def test_parallel_round_is_isolated():
    orch = Orchestrator()
    orch.register(Chatter(_profile("a"), orch.bus))
    orch.register(Chatter(_profile("b"), orch.bus))

    results = asyncio.run(orch.run_round(None))
    assert {name: r.action.type for name, r in results.items()} == {"a": ActionType.message, "b": ActionType.message}
    assert orch.get("a").perception.messages == []
    assert orch.get("b").perception.messages == []
    assert orch.bus.pending("a") == 1
    assert orch.bus.pending("b") == 1


def test_vote_reaches_consensus():
    orch = _orchestrator()
    result = asyncio.run(orch.request_vote("Next event?", ["rest_stop", "boss"], timeout_ms=2000))
    assert result.winner == "rest_stop"
    assert result.consensus is True
    assert result.complete is True
    assert len(result.votes) == 4
    assert result.total_confidence == pytest.approx(0.5 * 1.5 + 0.7 * 1.2 + 0.6 * 1.3 + 0.6 * 0.8)
    assert any(log.type == "vote" for log in orch.collector.logs())


def test_weighted_majority_below_threshold_is_not_consensus():
    orch = _orchestrator()
    result = asyncio.run(orch.request_vote("Next event?", ["rest_stop", "boss"], {"tension_level": 3}))
    assert result.winner == "rest_stop"
    # 3.3 of 4.8 voting weight is below the 0.7 threshold.
    assert result.consensus is False
    by_agent = {v.agent_name: v.choice for v in result.votes}
    assert by_agent[QUEST_DESIGNER] == "boss"


def test_initiator_does_not_vote():
    orch = _orchestrator()
    result = asyncio.run(orch.request_vote("Next?", ["boss", "rest_stop"], initiator=QUEST_DESIGNER))
    assert result.expected_voters == 3
    assert QUEST_DESIGNER not in {v.agent_name for v in result.votes}


def test_vote_deadline_returns_partial_result():
    orch = _orchestrator()
    orch.register(SlowVoter(_profile("slow", ("strategy",)), orch.bus))

    result = asyncio.run(orch.request_vote("Next?", ["rest_stop", "boss"], timeout_ms=50))
    assert result.expected_voters == 5
    assert len(result.votes) == 4
    assert result.complete is False
    assert result.winner == "rest_stop"
    assert orch.get("slow").phase.value == "idle"


def test_vote_with_no_voters():
    orch = Orchestrator()
    result = asyncio.run(orch.request_vote("Anyone?", ["yes"], timeout_ms=50))
    assert result.winner == "none"
    assert result.consensus is False


def test_negotiation_consensus_on_most_preferred():
    orch = _orchestrator()
    proposals = {
        QUEST_DESIGNER: {"risk": "RISKY", "plan": "charge"},
        NARRATOR: {"risk": "SAFE", "plan": "sneak"},
    }
    result = asyncio.run(
        orch.negotiate([QUEST_DESIGNER, CHOICE_DESIGNER, VALIDATOR, NARRATOR], "Approach", proposals)
    )
    assert result.agreed is True
    assert result.rounds == 1
    assert result.winner == QUEST_DESIGNER
    assert result.consensus == {"risk": "RISKY", "plan": "charge"}
    assert any(log.type == "negotiation" for log in orch.collector.logs())


def test_negotiation_adopts_revision():
    orch = _orchestrator()
    result = asyncio.run(orch.negotiate([VALIDATOR], "Approach", {QUEST_DESIGNER: {"risk": "RISKY"}}))
    assert result.agreed is True
    assert result.rounds == 2
    assert result.winner == VALIDATOR
    assert result.consensus == {"risk": "MODERATE"}


def test_negotiation_without_consensus_falls_back_to_first():
    orch = Orchestrator()
    orch.register(Stubborn(_profile("x"), orch.bus))
    orch.register(Stubborn(_profile("y"), orch.bus))
    proposals = {"x": {"plan": "left"}, "y": {"plan": "right"}}
    result = asyncio.run(orch.negotiate(["x", "y"], "Route", proposals, max_rounds=2))
    assert result.agreed is False
    assert result.rounds == 2
    assert result.winner == "x"
    assert result.consensus == {"plan": "left"}


def test_negotiation_rejects_empty_input():
    orch = _orchestrator()
    with pytest.raises(ValueError):
        asyncio.run(orch.negotiate([VALIDATOR], "Nothing", {}))
    with pytest.raises(ValueError):
        asyncio.run(orch.negotiate([VALIDATOR], "Nothing", {"a": {}}, max_rounds=0))


def test_reset_clears_bus():
    orch = _orchestrator()
    asyncio.run(orch.request_vote("Next?", ["boss"]))
    assert orch.history()
    orch.reset()
    assert orch.history() == []


def test_critical_alert_during_round_reaches_peers():
    orch = _orchestrator()
    team = make_state().team
    critical = make_state([team[0], apply_damage(team[1], 999), apply_damage(team[2], 999)])
    asyncio.run(orch.run_round(critical, agent_names=[VALIDATOR]))
    for name in (QUEST_DESIGNER, CHOICE_DESIGNER, NARRATOR):
        assert orch.bus.pending(name) == 1
    assert any(log.type == "alert" for log in orch.collector.logs())


def test_vote_from_unregistered_agent_is_dropped(caplog):
    orch = _orchestrator()
    leaver = Leaver(_profile("leaver", ("strategy",)), orch.bus)
    leaver.orchestrator = orch
    orch.register(leaver)

    with caplog.at_level(logging.WARNING, logger="adventure_mas.orchestrator"):
        result = asyncio.run(orch.request_vote("Next?", ["rest_stop", "boss"], timeout_ms=50))
    assert "leaver" not in {v.agent_name for v in result.votes}
    assert len(result.votes) == 4
    assert result.complete is False
    assert "Dropping vote from leaver" in caplog.text
