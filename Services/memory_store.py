# companions/Services/memory_store.py
from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterator, List, Optional

from Domain.constants import SpeakerRole
from Domain.errors import MissingMemoryError
from Domain.models import ConversationEntry, ConversationMemory
from Domain.utils import personality_key, utc_now
from Services.ports import IClock


class ConversationMemoryStore:
    """
    In-process ConversationMemory registry keyed by conversation id.

    - get_or_create() is idempotent: the first call's arguments win.
    - append() keeps arrival order and always bumps message_count.
    - max_history (optional) caps stored entries to the most recent N; the
      counter still counts every append.

    Only the SessionManager mutates records; other components read.
    """

    def __init__(self, *, max_history: Optional[int] = None, clock: Optional[IClock] = None):
        if max_history is not None and max_history < 1:
            raise ValueError("max_history must be >= 1 or None")
        self.max_history = max_history
        self.clock = clock
        self._memories: Dict[str, ConversationMemory] = {}

    def __len__(self) -> int:
        return len(self._memories)

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._memories

    def __iter__(self) -> Iterator[ConversationMemory]:
        return iter(list(self._memories.values()))

    def get(self, conversation_id: str) -> Optional[ConversationMemory]:
        return self._memories.get(conversation_id)

    def get_or_create(
        self,
        conversation_id: str,
        scripted_identity_id: str,
        human_id: str,
        personality: str,
    ) -> ConversationMemory:
        memory = self._memories.get(conversation_id)
        if memory is not None:
            return memory

        memory = ConversationMemory(
            conversation_id=conversation_id,
            scripted_identity_id=scripted_identity_id,
            human_id=human_id,
            personality=personality_key(personality),
            started_at=self._now(),
        )
        self._memories[conversation_id] = memory
        return memory

    def append(
        self,
        conversation_id: str,
        role: SpeakerRole,
        text: str,
        ts: Optional[datetime] = None,
    ) -> ConversationEntry:
        memory = self._memories.get(conversation_id)
        if memory is None:
            raise MissingMemoryError(conversation_id)

        entry = ConversationEntry(role=SpeakerRole(role), text=text, ts=ts or self._now())
        memory.entries.append(entry)
        memory.message_count += 1

        if self.max_history is not None:
            overflow = len(memory.entries) - self.max_history
            if overflow > 0:
                del memory.entries[:overflow]
        return entry

    def clear(self, conversation_id: str) -> bool:
        return self._memories.pop(conversation_id, None) is not None

    def for_identity(self, scripted_identity_id: str) -> List[ConversationMemory]:
        return [m for m in self._memories.values() if m.scripted_identity_id == scripted_identity_id]

    def drop_identity(self, scripted_identity_id: str) -> List[str]:
        """Discard every memory owned by a scripted identity; returns the dropped conversation ids."""
        dropped = [m.conversation_id for m in self.for_identity(scripted_identity_id)]
        for cid in dropped:
            del self._memories[cid]
        return dropped

    def total_messages(self) -> int:
        return sum(m.message_count for m in self._memories.values())

    def _now(self) -> datetime:
        return self.clock.now() if self.clock else utc_now()
