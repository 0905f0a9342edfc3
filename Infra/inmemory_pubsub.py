# companions/Infra/inmemory_pubsub.py
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

Event = Tuple[str, str, Dict[str, Any]]  # (conversation_id, event name, payload)


@dataclass(eq=False)
class Subscription:
    """One subscriber's inbox for a conversation room."""
    conversation_id: str
    queue: "asyncio.Queue[Event]" = field(default_factory=lambda: asyncio.Queue(maxsize=256))
    dropped: int = 0

    async def get(self, timeout: Optional[float] = None) -> Event:
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout)

    def drain(self) -> List[Event]:
        out: List[Event] = []
        while True:
            try:
                out.append(self.queue.get_nowait())
            except asyncio.QueueEmpty:
                return out


class InMemoryPubSub:
    """
    Room-based publish/subscribe inside one process.

    publish() never waits on subscribers: each event is put_nowait() into every
    subscriber queue of the room, and a full queue drops the event (at-most-once).
    With keep_history, `history` holds the most recent `history_limit` events
    (None keeps all), for inspection in tests.
    """

    def __init__(self, *, keep_history: bool = False, history_limit: Optional[int] = None):
        self._rooms: Dict[str, Set[Subscription]] = {}
        self.keep_history = keep_history
        self.history: Deque[Event] = deque(maxlen=history_limit)

    def subscribe(self, conversation_id: str) -> Subscription:
        sub = Subscription(conversation_id)
        self._rooms.setdefault(conversation_id, set()).add(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        subs = self._rooms.get(sub.conversation_id)
        if not subs:
            return
        subs.discard(sub)
        if not subs:
            del self._rooms[sub.conversation_id]

    def subscriber_count(self, conversation_id: str) -> int:
        return len(self._rooms.get(conversation_id, ()))

    async def publish(self, conversation_id: str, event: str, payload: Dict[str, Any]) -> None:
        item: Event = (conversation_id, event, dict(payload))
        if self.keep_history:
            self.history.append(item)
        for sub in list(self._rooms.get(conversation_id, ())):
            try:
                sub.queue.put_nowait(item)
            except asyncio.QueueFull:
                sub.dropped += 1
                logger.warning("subscriber queue full for %s; dropped %s", conversation_id, event)

    def events(self, conversation_id: Optional[str] = None, event: Optional[str] = None) -> List[Event]:
        return [
            e for e in self.history
            if (conversation_id is None or e[0] == conversation_id) and (event is None or e[1] == event)
        ]
