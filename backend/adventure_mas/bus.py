"""Per-session message bus with mailbox routing.

The bus only appends: published messages are frozen, recorded in a
bounded history and copied into recipient mailboxes. Broadcasts reach
the agents whose expertise matches the payload's routing tags, or every
agent when the message is critical. During a parallel round deliveries
are held back until the round closes, so agents in the same round never
see each other's output.
"""

import logging
from collections import Counter, deque
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .config import settings
from .errors import PayloadError
from .payloads import ALLOWED_KINDS, Payload, routing_tags
from .utils import new_id, utc_now

logger = logging.getLogger(__name__)

BROADCAST = "all"
ORCHESTRATOR = "orchestrator"


class MessageKind(str, Enum):
    request = "request"
    response = "response"
    broadcast = "broadcast"
    vote = "vote"
    negotiation = "negotiation"


class Priority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


PRIORITY_RANK = {Priority.critical: 0, Priority.high: 1, Priority.medium: 2, Priority.low: 3}

_payload_adapter: TypeAdapter[Any] = TypeAdapter(Payload)


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("msg"))
    sender: str
    recipient: str
    kind: MessageKind
    priority: Priority = Priority.medium
    payload: Payload
    created_at: datetime = Field(default_factory=utc_now)
    requires_response: bool = False
    in_reply_to: str | None = None


Listener = Callable[[Message], None]


class MessageBus:
    """Routes messages between registered agents of one session."""

    def __init__(self, history_size: int | None = None) -> None:
        self.history_size = history_size or settings.bus_history_size
        self._history: deque[Message] = deque(maxlen=self.history_size)
        self._expertise: dict[str, frozenset[str]] = {}
        self._mailboxes: dict[str, list[Message]] = {}
        self._listeners: list[Listener] = []
        self._request_ids: set[str] = set()
        self._held: list[tuple[str, Message]] | None = None
        self._kind_counts: Counter[str] = Counter()
        self._sender_counts: Counter[str] = Counter()

    def register(self, name: str, expertise: list[str] | frozenset[str]) -> None:
        if name in (BROADCAST, ORCHESTRATOR):
            raise ValueError(f"'{name}' is a reserved address")
        self._expertise[name] = frozenset(expertise)
        self._mailboxes.setdefault(name, [])

    def unregister(self, name: str) -> None:
        self._expertise.pop(name, None)
        self._mailboxes.pop(name, None)

    @property
    def agents(self) -> list[str]:
        return list(self._expertise)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def publish(
        self,
        sender: str,
        recipient: str,
        kind: MessageKind | str,
        payload: dict[str, Any] | BaseModel,
        *,
        priority: Priority | str = Priority.medium,
        requires_response: bool = False,
        in_reply_to: str | None = None,
    ) -> Message:
        """Validate, record and route one message; returns the frozen message."""

        message = self._build(sender, recipient, kind, payload, priority, requires_response, in_reply_to)
        self._history.append(message)
        self._kind_counts[message.kind.value] += 1
        self._sender_counts[message.sender] += 1
        if message.kind == MessageKind.request:
            self._request_ids.add(message.id)

        for name in self._recipients_for(message):
            if self._held is not None:
                self._held.append((name, message))
            else:
                self._mailboxes[name].append(message)
        logger.debug(
            "Published %s %s -> %s (%s, %s)",
            message.kind.value,
            message.sender,
            message.recipient,
            message.payload.topic,
            message.priority.value,
        )
        for listener in list(self._listeners):
            listener(message)
        return message

    def _build(self, sender, recipient, kind, payload, priority, requires_response, in_reply_to) -> Message:
        if isinstance(payload, BaseModel):
            payload = payload.model_dump()
        try:
            typed_payload = _payload_adapter.validate_python(payload)
            message = Message(
                sender=sender,
                recipient=recipient,
                kind=kind,
                priority=priority,
                payload=typed_payload,
                requires_response=requires_response,
                in_reply_to=in_reply_to,
            )
        except ValidationError as exc:
            raise PayloadError(f"Invalid message from {sender}: {exc.errors()[0]['msg']}") from exc

        allowed = ALLOWED_KINDS[message.payload.topic]
        if message.kind.value not in allowed:
            raise PayloadError(f"Topic '{message.payload.topic}' cannot travel as '{message.kind.value}'")
        if message.kind == MessageKind.response:
            if not message.in_reply_to:
                raise PayloadError("Response messages must reference their request")
            if message.in_reply_to not in self._request_ids:
                raise PayloadError(f"Response references unknown request {message.in_reply_to}")
        return message

    def _recipients_for(self, message: Message) -> list[str]:
        if message.recipient == ORCHESTRATOR:
            # Orchestrator traffic is consumed by listeners.
            return []
        if message.recipient != BROADCAST:
            if message.recipient not in self._mailboxes:
                logger.warning("Dropping message %s for unknown recipient %s", message.id, message.recipient)
                return []
            return [message.recipient]

        tags = routing_tags(message.payload)
        names: list[str] = []
        for name, expertise in self._expertise.items():
            if name == message.sender:
                continue
            if message.priority == Priority.critical or not tags or expertise & tags:
                names.append(name)
        return names

    def drain(self, name: str) -> list[Message]:
        """Remove and return a mailbox's messages, most urgent first."""

        mailbox = self._mailboxes.get(name)
        if not mailbox:
            return []
        messages = sorted(mailbox, key=lambda m: PRIORITY_RANK[m.priority])
        mailbox.clear()
        return messages

    def pending(self, name: str) -> int:
        return len(self._mailboxes.get(name, []))

    @contextmanager
    def isolated_round(self) -> Iterator[None]:
        """Hold agent deliveries until the block exits."""

        if self._held is not None:
            raise RuntimeError("A round is already open on this bus")
        self._held = []
        try:
            yield
        finally:
            held, self._held = self._held, None
            for name, message in held:
                if name in self._mailboxes:
                    self._mailboxes[name].append(message)

    def history(self, limit: int | None = None) -> list[Message]:
        items = list(self._history)
        if limit is not None:
            return items[-limit:] if limit > 0 else []
        return items

    def stats(self) -> dict[str, Any]:
        return {
            "agents": len(self._expertise),
            "history": len(self._history),
            "published": sum(self._kind_counts.values()),
            "by_kind": dict(self._kind_counts),
            "by_sender": dict(self._sender_counts),
            "pending": {name: len(box) for name, box in self._mailboxes.items() if box},
        }

    def reset(self) -> None:
        self._history.clear()
        self._request_ids.clear()
        self._kind_counts.clear()
        self._sender_counts.clear()
        for mailbox in self._mailboxes.values():
            mailbox.clear()
