"""Passive recorder of inter-agent traffic for callers and live streams.

One collector exists per session. It is attached to the session bus as a
listener and keeps a bounded window of readable entries. Subscribers (the
websocket stream) are called synchronously with every new entry.
"""

import logging
from collections import deque
from collections.abc import Callable
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from .bus import Message, MessageKind
from .config import settings
from .payloads import Alert, NegotiationRound, TaskRequest, TaskResult, VoteCast, VoteRequest
from .utils import new_id, utc_now

logger = logging.getLogger(__name__)

LogType = Literal["message", "broadcast", "vote", "negotiation", "alert", "system"]
LogPriority = Literal["low", "medium", "high", "critical"]


class InteractionLog(BaseModel):
    id: str = Field(default_factory=lambda: new_id("log"))
    timestamp: datetime = Field(default_factory=utc_now)
    type: LogType
    sender: str
    recipient: str
    priority: LogPriority = "medium"
    content: str
    details: dict[str, Any] = Field(default_factory=dict)


Subscriber = Callable[[InteractionLog], None]


class InteractionLogCollector:
    """Bounded, oldest-first log of agent interactions."""

    def __init__(self, max_logs: int | None = None) -> None:
        self.max_logs = max_logs or settings.interaction_log_size
        self.enabled = True
        self._logs: deque[InteractionLog] = deque(maxlen=self.max_logs)
        self._subscribers: list[Subscriber] = []

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def add(
        self,
        log_type: LogType,
        sender: str,
        recipient: str,
        content: str,
        priority: LogPriority = "medium",
        details: dict[str, Any] | None = None,
    ) -> InteractionLog | None:
        if not self.enabled:
            return None
        entry = InteractionLog(
            type=log_type,
            sender=sender,
            recipient=recipient,
            priority=priority,
            content=content,
            details=details or {},
        )
        self._logs.append(entry)
        for callback in list(self._subscribers):
            callback(entry)
        return entry

    def log_message(self, sender: str, recipient: str, content: str, priority: LogPriority = "medium", details=None):
        return self.add("message", sender, recipient, content, priority, details)

    def log_broadcast(self, sender: str, content: str, priority: LogPriority = "medium", details=None):
        return self.add("broadcast", sender, "all", content, priority, details)

    def log_vote(self, agent: str, choice: str, confidence: float, reasoning: str):
        return self.add(
            "vote",
            agent,
            "orchestrator",
            f"Voted for: {choice}",
            "high",
            {"choice": choice, "confidence": confidence, "reasoning": reasoning},
        )

    def log_negotiation(self, round_no: int, participants: list[str], content: str, details=None):
        return self.add("negotiation", "orchestrator", ", ".join(participants), f"Round {round_no}: {content}", "high", details)

    def log_alert(self, sender: str, content: str, severity: Literal["warning", "critical"], details=None):
        priority: LogPriority = "critical" if severity == "critical" else "high"
        return self.add("alert", sender, "all", content, priority, details)

    def log_system(self, content: str, details=None):
        return self.add("system", "system", "all", content, "low", details)

    def record(self, message: Message) -> None:
        """Bus listener: turn a published message into a readable entry."""

        payload = message.payload
        if isinstance(payload, VoteCast):
            self.log_vote(message.sender, payload.choice, payload.confidence, payload.reasoning)
            return
        if isinstance(payload, Alert) and payload.level in ("warning", "critical"):
            self.log_alert(message.sender, payload.message, payload.level, {"subject": payload.subject, **payload.data})
            return
        if isinstance(payload, NegotiationRound):
            self.log_negotiation(payload.round, [message.recipient], payload.subject, {"proposals": len(payload.proposals)})
            return
        content = _summarize(payload)
        details = {"message_id": message.id, "kind": message.kind.value}
        if message.kind == MessageKind.broadcast or message.recipient == "all":
            self.log_broadcast(message.sender, content, message.priority.value, details)
        else:
            self.log_message(message.sender, message.recipient, content, message.priority.value, details)

    def logs(self) -> list[InteractionLog]:
        return list(self._logs)

    def logs_since(self, last_id: str) -> list[InteractionLog]:
        """Entries after ``last_id``; everything when the id has been evicted."""

        entries = list(self._logs)
        for idx, entry in enumerate(entries):
            if entry.id == last_id:
                return entries[idx + 1 :]
        return entries

    def recent(self, count: int = 20) -> list[InteractionLog]:
        if count <= 0:
            return []
        return list(self._logs)[-count:]

    def clear(self) -> None:
        self._logs.clear()

    def count(self) -> int:
        return len(self._logs)


def _summarize(payload: Any) -> str:
    if isinstance(payload, TaskRequest):
        return f"Request: {payload.task}"
    if isinstance(payload, TaskResult):
        return f"Result: {payload.task}" + (f" (error: {payload.error})" if payload.error else "")
    if isinstance(payload, VoteRequest):
        return f"Vote requested: {payload.question}"
    if isinstance(payload, Alert):
        return payload.message
    return payload.topic
