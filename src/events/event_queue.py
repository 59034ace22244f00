"""In-memory queue with visibility-timeout redelivery.

Received messages stay hidden until acknowledged or until the
visibility timeout expires, after which they are delivered again.
The same queue backs local event delivery and the stale-table queue.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Protocol, TypeVar
from uuid import uuid4

from core.types import CrawlEvent

BodyT = TypeVar("BodyT")


@dataclass(frozen=True)
class QueueMessage(Generic[BodyT]):
    """One delivery of a queued message.

    Attributes:
        receipt: Handle used to acknowledge this delivery.
        body: Message payload.
        delivery_count: Number of times the message has been delivered.
    """

    receipt: str
    body: BodyT
    delivery_count: int


EventBatch = tuple[CrawlEvent, ...]


class EventSource(Protocol):
    """At-least-once source of object-created notifications."""

    def receive(self, max_messages: int) -> list[QueueMessage[EventBatch]]:
        ...

    def ack(self, receipt: str) -> None:
        ...


@dataclass
class _Entry(Generic[BodyT]):
    message_id: str
    body: BodyT
    delivery_count: int = 0
    visible_at: float = 0.0
    receipt: str | None = None


class InMemoryQueue(Generic[BodyT]):
    """Thread-safe FIFO queue with visibility-timeout redelivery."""

    def __init__(
        self,
        visibility_timeout_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._visibility_timeout = visibility_timeout_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[str, _Entry[BodyT]] = OrderedDict()
        self._receipts: dict[str, str] = {}

    def send(self, body: BodyT) -> str:
        """Enqueue a message and return its id."""
        entry = _Entry(message_id=uuid4().hex, body=body)
        with self._lock:
            self._entries[entry.message_id] = entry
        return entry.message_id

    def receive(self, max_messages: int) -> list[QueueMessage[BodyT]]:
        """Deliver up to ``max_messages`` visible messages in FIFO order."""
        now = self._clock()
        delivered: list[QueueMessage[BodyT]] = []
        with self._lock:
            for entry in self._entries.values():
                if len(delivered) >= max_messages:
                    break
                if entry.visible_at > now:
                    continue
                if entry.receipt is not None:
                    self._receipts.pop(entry.receipt, None)
                entry.receipt = uuid4().hex
                entry.delivery_count += 1
                entry.visible_at = now + self._visibility_timeout
                self._receipts[entry.receipt] = entry.message_id
                delivered.append(
                    QueueMessage(
                        receipt=entry.receipt,
                        body=entry.body,
                        delivery_count=entry.delivery_count,
                    )
                )
        return delivered

    def ack(self, receipt: str) -> None:
        """Delete the message behind a receipt.

        Receipts from expired deliveries are ignored, so a slow consumer
        cannot delete a message already handed to another consumer.
        """
        with self._lock:
            message_id = self._receipts.pop(receipt, None)
            if message_id is None:
                return
            entry = self._entries.get(message_id)
            if entry is not None and entry.receipt == receipt:
                del self._entries[message_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class InMemoryEventSource(InMemoryQueue[EventBatch]):
    """Local event source fed directly with crawl events."""

    def publish(self, events: Iterable[CrawlEvent]) -> None:
        """Enqueue each event as its own message."""
        for event in events:
            self.send((event,))
