"""Message bus routing and validation tests."""

import pytest

from adventure_mas.bus import BROADCAST, ORCHESTRATOR, MessageBus, MessageKind, Priority
from adventure_mas.errors import PayloadError
from adventure_mas.payloads import Alert, TaskRequest, TaskResult, VoteCast


def _bus() -> MessageBus:
    bus = MessageBus(history_size=10)
    bus.register("validator", ["validation", "risk_analysis", "team_health"])
    bus.register("narrator", ["narration", "outcome_description"])
    bus.register("designer", ["quest_design", "event_generation"])
    return bus


def test_direct_message_reaches_only_recipient():
    bus = _bus()
    bus.publish("designer", "narrator", MessageKind.request, TaskRequest(task="narrate_outcome"))
    assert bus.pending("narrator") == 1
    assert bus.pending("validator") == 0
    assert bus.pending("designer") == 0


def test_broadcast_routes_by_expertise():
    bus = _bus()
    bus.publish(ORCHESTRATOR, BROADCAST, MessageKind.request, TaskRequest(task="validate_choices"))
    assert bus.pending("validator") == 1
    assert bus.pending("narrator") == 0
    assert bus.pending("designer") == 0


def test_critical_broadcast_reaches_everyone_but_sender():
    bus = _bus()
    alert = Alert(level="critical", subject="team_health", message="Team is in danger")
    bus.publish("validator", BROADCAST, MessageKind.broadcast, alert, priority=Priority.critical)
    assert bus.pending("validator") == 0
    assert bus.pending("narrator") == 1
    assert bus.pending("designer") == 1


def test_drain_orders_by_priority_and_empties_mailbox():
    bus = _bus()
    bus.publish("designer", "narrator", MessageKind.broadcast, Alert(subject="x", message="low"), priority="low")
    bus.publish("designer", "narrator", MessageKind.broadcast, Alert(subject="x", message="crit"), priority="critical")
    bus.publish("designer", "narrator", MessageKind.broadcast, Alert(subject="x", message="mid"))
    drained = bus.drain("narrator")
    assert [m.payload.message for m in drained] == ["crit", "mid", "low"]
    assert bus.drain("narrator") == []


def test_orchestrator_messages_go_to_listeners_only():
    bus = _bus()
    seen = []
    bus.add_listener(seen.append)
    cast = VoteCast(vote_id="vote_1", choice="boss", confidence=0.9, weight=1.5)
    message = bus.publish("designer", ORCHESTRATOR, MessageKind.vote, cast)
    assert seen == [message]
    assert all(bus.pending(name) == 0 for name in bus.agents)


def test_unknown_recipient_is_dropped():
    bus = _bus()
    bus.publish("designer", "ghost", MessageKind.request, TaskRequest(task="generate_quest"))
    assert sum(bus.pending(name) for name in bus.agents) == 0
    assert len(bus.history()) == 1


def test_topic_kind_mismatch_is_rejected():
    bus = _bus()
    with pytest.raises(PayloadError):
        bus.publish("designer", "narrator", MessageKind.vote, TaskRequest(task="narrate_outcome"))


def test_unknown_payload_shape_is_rejected():
    bus = _bus()
    with pytest.raises(PayloadError):
        bus.publish("designer", "narrator", MessageKind.request, {"topic": "gossip", "text": "hi"})
    with pytest.raises(PayloadError):
        bus.publish("designer", "narrator", MessageKind.request, {"topic": "task_request", "task": "dance"})
    assert bus.history() == []


def test_response_must_reference_known_request():
    bus = _bus()
    result = TaskResult(task="narrate_outcome", data={"narration": "ok"})
    with pytest.raises(PayloadError):
        bus.publish("narrator", "designer", MessageKind.response, result)
    with pytest.raises(PayloadError):
        bus.publish("narrator", "designer", MessageKind.response, result, in_reply_to="msg_missing")

    request = bus.publish("designer", "narrator", MessageKind.request, TaskRequest(task="narrate_outcome"))
    reply = bus.publish("narrator", "designer", MessageKind.response, result, in_reply_to=request.id)
    assert reply.in_reply_to == request.id


def test_isolated_round_holds_deliveries():
    bus = _bus()
    with bus.isolated_round():
        bus.publish("designer", "narrator", MessageKind.broadcast, Alert(subject="x", message="held"))
        assert bus.pending("narrator") == 0
    assert bus.pending("narrator") == 1


def test_nested_rounds_are_refused():
    bus = _bus()
    with bus.isolated_round():
        with pytest.raises(RuntimeError):
            with bus.isolated_round():
                pass


def test_history_is_bounded_and_stats_count():
    bus = _bus()
    for i in range(15):
        bus.publish("designer", "narrator", MessageKind.broadcast, Alert(subject="x", message=str(i)))
    assert len(bus.history()) == 10
    assert [m.payload.message for m in bus.history(2)] == ["13", "14"]
    stats = bus.stats()
    assert stats["published"] == 15
    assert stats["by_sender"] == {"designer": 15}
    assert stats["pending"] == {"narrator": 15}

    bus.reset()
    assert bus.history() == []
    assert bus.pending("narrator") == 0


def test_reserved_names_cannot_register():
    bus = MessageBus()
    with pytest.raises(ValueError):
        bus.register(ORCHESTRATOR, [])
    with pytest.raises(ValueError):
        bus.register(BROADCAST, [])
