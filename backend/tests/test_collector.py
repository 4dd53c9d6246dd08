"""Interaction log collector tests."""

from adventure_mas.bus import BROADCAST, ORCHESTRATOR, MessageBus, MessageKind, Priority
from adventure_mas.collector import InteractionLogCollector
from adventure_mas.payloads import Alert, TaskRequest, VoteCast


def test_collector_is_bounded():
    collector = InteractionLogCollector(max_logs=3)
    for i in range(5):
        collector.log_system(f"entry {i}")
    assert collector.count() == 3
    assert [e.content for e in collector.logs()] == ["entry 2", "entry 3", "entry 4"]
    assert [e.content for e in collector.recent(2)] == ["entry 3", "entry 4"]
    assert collector.recent(0) == []


def test_logs_since():
    collector = InteractionLogCollector()
    first = collector.log_system("one")
    collector.log_system("two")
    collector.log_system("three")
    assert [e.content for e in collector.logs_since(first.id)] == ["two", "three"]
    assert len(collector.logs_since("log_evicted")) == 3


def test_disabled_collector_records_nothing():
    collector = InteractionLogCollector()
    collector.set_enabled(False)
    assert collector.log_message("a", "b", "hello") is None
    assert collector.count() == 0
    collector.set_enabled(True)
    collector.log_message("a", "b", "hello")
    assert collector.count() == 1
    collector.clear()
    assert collector.count() == 0


def test_subscribers_receive_entries():
    collector = InteractionLogCollector()
    seen = []
    collector.subscribe(seen.append)
    entry = collector.log_alert("validator", "Team critical", "critical")
    assert seen == [entry]
    collector.unsubscribe(seen.append)
    collector.log_system("quiet")
    assert len(seen) == 1


def test_records_bus_traffic_by_payload():
    bus = MessageBus()
    bus.register("validator", ["validation", "team_health"])
    bus.register("narrator", ["narration"])
    collector = InteractionLogCollector()
    bus.add_listener(collector.record)

    bus.publish(ORCHESTRATOR, "narrator", MessageKind.request, TaskRequest(task="narrate_outcome"))
    bus.publish(
        "validator",
        BROADCAST,
        MessageKind.broadcast,
        Alert(level="critical", subject="team_health", message="Team is in danger"),
        priority=Priority.critical,
    )
    bus.publish("narrator", ORCHESTRATOR, MessageKind.vote, VoteCast(vote_id="v", choice="rest", confidence=0.6, weight=0.8))

    types = [e.type for e in collector.logs()]
    assert types == ["message", "alert", "vote"]
    message, alert, vote = collector.logs()
    assert message.content == "Request: narrate_outcome"
    assert message.recipient == "narrator"
    assert alert.priority == "critical"
    assert alert.details["subject"] == "team_health"
    assert vote.sender == "narrator"
