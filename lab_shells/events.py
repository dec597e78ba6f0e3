from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Set
from asyncio import Queue as AsyncQueue
import asyncio
import logging
import time

logger = logging.getLogger(__name__)


class EventType(Enum):
    SESSION_CREATED = "session.created"
    SESSION_HANDSHAKING = "session.handshaking"
    SESSION_ACTIVE = "session.active"
    SESSION_CLOSING = "session.closing"
    SESSION_CLOSED = "session.closed"


@dataclass
class SessionEvent:
    type: EventType
    session_id: str
    timestamp: float = field(default_factory=time.time)
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "session_id": self.session_id,
            "timestamp": self.timestamp,
            "data": self.data,
        }


class EventBus:
    """In-process event bus with subscription support.

    NOTE: This bus is local to a single Python process. Subscriber queues are
    bounded; a subscriber that falls behind loses events instead of stalling
    the session that published them.
    """

    SUBSCRIBER_QUEUE_SIZE = 1000

    def __init__(self):
        self._subscribers: Set[AsyncQueue[SessionEvent]] = set()

    def subscribe(self) -> AsyncQueue[SessionEvent]:
        q: AsyncQueue[SessionEvent] = AsyncQueue(maxsize=self.SUBSCRIBER_QUEUE_SIZE)
        self._subscribers.add(q)
        return q

    def unsubscribe(self, q: AsyncQueue[SessionEvent]) -> None:
        self._subscribers.discard(q)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: SessionEvent) -> None:
        for q in list(self._subscribers):
            try:
                q.put_nowait(event)
            except asyncio.QueueFull:
                logger.debug("Dropping %s for slow subscriber", event.type.value)


# Singleton
_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    global _bus
    if _bus is None:
        _bus = EventBus()
    return _bus
