# companions/Services/ports.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from Domain.models import ConversationEntry, IdentityProfile, IdentityRecord, MessageDraft, StoredMessage


# ----------------------------
# Protocols (ports)
# ----------------------------

class IClock(Protocol):
    def now(self) -> datetime: ...


class IIdentityStore(Protocol):
    """Read identities/profiles; write presence. Implemented outside this core."""
    async def get_identity(self, identity_id: str) -> Optional[IdentityRecord]: ...
    async def list_scripted(self) -> List[IdentityRecord]: ...
    async def set_presence(self, identity_id: str, *, online: bool, last_active: datetime) -> None: ...


class IMatchStore(Protocol):
    async def is_active_between(self, conversation_id: str, human_id: str, identity_id: str) -> bool: ...
    async def active_conversations(self, identity_ids: Iterable[str]) -> List[str]: ...


class IMessageStore(Protocol):
    """Append-only message persistence; returns the stored handle (id + timestamp)."""
    async def save(self, draft: MessageDraft) -> StoredMessage: ...
    async def mark_read(self, conversation_id: str, reader_id: str) -> int: ...


class ITransport(Protocol):
    """Publish/subscribe fan-out to a conversation's room. At-most-once, no ack."""
    async def publish(self, conversation_id: str, event: str, payload: Dict[str, Any]) -> None: ...


class IResponder(Protocol):
    def reply(
        self,
        user_text: Any,
        personality: Any,
        recent_context: Sequence[ConversationEntry] = (),
        profile: Optional[IdentityProfile] = None,
    ) -> str: ...

    def initiative_text(self, personality: Any = None) -> str: ...

    def typing_delay(self, message_length: Optional[int] = None) -> int: ...
