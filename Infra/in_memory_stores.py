# companions/Infra/in_memory_stores.py
from __future__ import annotations

import itertools
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from Domain.errors import UnknownIdentityError
from Domain.models import IdentityProfile, IdentityRecord, MessageDraft, StoredMessage


class InMemoryIdentityStore:
    """Identity/profile store kept in a dict. Presence writes are recorded for inspection."""

    def __init__(self, records: Iterable[IdentityRecord] = ()):
        self._records: Dict[str, IdentityRecord] = {r.identity_id: r for r in records}
        self.presence_log: List[Tuple[str, bool, datetime]] = []

    def add(self, record: IdentityRecord) -> None:
        self._records[record.identity_id] = record

    def add_scripted(self, identity_id: str, profile: IdentityProfile) -> IdentityRecord:
        record = IdentityRecord(identity_id=identity_id, profile=profile, is_scripted=True)
        self.add(record)
        return record

    async def get_identity(self, identity_id: str) -> Optional[IdentityRecord]:
        return self._records.get(identity_id)

    async def list_scripted(self) -> List[IdentityRecord]:
        return [r for r in self._records.values() if r.is_scripted]

    async def set_presence(self, identity_id: str, *, online: bool, last_active: datetime) -> None:
        record = self._records.get(identity_id)
        if record is None:
            raise UnknownIdentityError(identity_id)
        self._records[identity_id] = replace(record, is_online=online, last_active=last_active)
        self.presence_log.append((identity_id, online, last_active))


@dataclass(frozen=True)
class MatchRecord:
    conversation_id: str
    user1: str
    user2: str
    status: str = "matched"

    def involves(self, user_id: str) -> bool:
        return user_id in (self.user1, self.user2)


class InMemoryMatchStore:
    def __init__(self, matches: Iterable[MatchRecord] = ()):
        self._matches: Dict[str, MatchRecord] = {m.conversation_id: m for m in matches}

    def add(self, conversation_id: str, user1: str, user2: str, status: str = "matched") -> MatchRecord:
        match = MatchRecord(conversation_id, user1, user2, status)
        self._matches[conversation_id] = match
        return match

    def set_status(self, conversation_id: str, status: str) -> None:
        self._matches[conversation_id] = replace(self._matches[conversation_id], status=status)

    async def is_active_between(self, conversation_id: str, human_id: str, identity_id: str) -> bool:
        match = self._matches.get(conversation_id)
        if match is None or match.status != "matched":
            return False
        return match.involves(human_id) and match.involves(identity_id)

    async def active_conversations(self, identity_ids: Iterable[str]) -> List[str]:
        wanted = set(identity_ids)
        return [
            m.conversation_id
            for m in self._matches.values()
            if m.status == "matched" and (m.user1 in wanted or m.user2 in wanted)
        ]


class InMemoryMessageStore:
    """Append-only message list with sequential ids ("m1", "m2", ...)."""

    def __init__(self) -> None:
        self.messages: List[StoredMessage] = []
        self._ids = itertools.count(1)

    async def save(self, draft: MessageDraft) -> StoredMessage:
        stored = StoredMessage.from_draft(f"m{next(self._ids)}", draft)
        self.messages.append(stored)
        return stored

    async def mark_read(self, conversation_id: str, reader_id: str) -> int:
        n = 0
        for i, m in enumerate(self.messages):
            if m.conversation_id == conversation_id and m.receiver_id == reader_id and not m.is_read:
                self.messages[i] = replace(m, is_read=True)
                n += 1
        return n

    def for_conversation(self, conversation_id: str) -> List[StoredMessage]:
        return [m for m in self.messages if m.conversation_id == conversation_id]
