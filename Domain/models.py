# companions/Domain/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from Domain.constants import MESSAGE_TYPE_TEXT, SpeakerRole
from Domain.utils import isoformat, parse_datetime, personality_key


# ----------------------------
# Identities
# ----------------------------

@dataclass(frozen=True)
class IdentityProfile:
    """
    Profile fields a scripted identity uses for personalization.
    Read from the external identity/profile store; never written by this core.
    """
    display_name: str
    personality: str = "friendly"
    interests: Tuple[str, ...] = field(default_factory=tuple)
    bio: str = ""
    occupation: str = ""
    location: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "display_name": self.display_name,
            "personality": self.personality,
            "interests": list(self.interests),
            "bio": self.bio,
            "occupation": self.occupation,
            "location": self.location,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "IdentityProfile":
        return IdentityProfile(
            display_name=str(d.get("display_name") or d.get("name") or ""),
            personality=personality_key(d.get("personality")),
            interests=tuple(str(x) for x in (d.get("interests") or [])),
            bio=str(d.get("bio", "")),
            occupation=str(d.get("occupation", "")),
            location=str(d.get("location", "")),
        )


@dataclass(frozen=True)
class IdentityRecord:
    """What the external identity store returns for one user id."""
    identity_id: str
    profile: IdentityProfile
    is_scripted: bool = False
    is_online: bool = False
    last_active: Optional[datetime] = None


@dataclass
class ScriptedIdentity:
    """
    Working copy of an active scripted identity, cached by the session context.
    Mutated in place: personality/last_active on re-activation, interaction_count per inbound message.
    """
    identity_id: str
    display_name: str
    personality: str
    profile: IdentityProfile
    last_active: datetime
    is_online: bool = True
    interaction_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity_id": self.identity_id,
            "display_name": self.display_name,
            "personality": self.personality,
            "profile": self.profile.to_dict(),
            "is_online": self.is_online,
            "last_active": isoformat(self.last_active),
            "interaction_count": self.interaction_count,
        }


# ----------------------------
# Conversation memory
# ----------------------------

@dataclass(frozen=True)
class ConversationEntry:
    """One line of a conversation transcript, as remembered by the session layer."""
    role: SpeakerRole
    text: str
    ts: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role.value, "text": self.text, "ts": isoformat(self.ts)}

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "ConversationEntry":
        return ConversationEntry(
            role=SpeakerRole(d["role"]),
            text=d["text"],
            ts=parse_datetime(d["ts"]),
        )


@dataclass
class ConversationMemory:
    """
    Per-match memory between one human and one scripted identity.

    - entries: stored history in arrival order (possibly capped by the store)
    - message_count: every message ever appended, independent of the cap
    """
    conversation_id: str
    scripted_identity_id: str
    human_id: str
    personality: str
    started_at: datetime
    entries: List[ConversationEntry] = field(default_factory=list)
    message_count: int = 0

    def last_activity(self) -> datetime:
        """Later of conversation start and the newest entry."""
        if not self.entries:
            return self.started_at
        last = self.entries[-1].ts
        return last if last > self.started_at else self.started_at

    def idle_seconds(self, now: datetime) -> float:
        return (now - self.last_activity()).total_seconds()

    def recent(self, n: int) -> Tuple[ConversationEntry, ...]:
        if n <= 0:
            return ()
        return tuple(self.entries[-n:])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "scripted_identity_id": self.scripted_identity_id,
            "human_id": self.human_id,
            "personality": self.personality,
            "started_at": isoformat(self.started_at),
            "entries": [e.to_dict() for e in self.entries],
            "message_count": self.message_count,
        }


# ----------------------------
# Events & messages
# ----------------------------

@dataclass(frozen=True)
class TypingEvent:
    identity_id: str
    conversation_id: str
    is_typing: bool


@dataclass(frozen=True)
class MessageDraft:
    """Outbound message handed to the external message store."""
    sender_id: str
    receiver_id: str
    conversation_id: str
    text: str
    ts: datetime
    message_type: str = MESSAGE_TYPE_TEXT
    is_scripted: bool = False


@dataclass(frozen=True)
class StoredMessage:
    """Handle returned by the message store: the draft plus a store-assigned id."""
    message_id: str
    sender_id: str
    receiver_id: str
    conversation_id: str
    text: str
    ts: datetime
    message_type: str = MESSAGE_TYPE_TEXT
    is_scripted: bool = False
    is_read: bool = False

    @staticmethod
    def from_draft(message_id: str, draft: MessageDraft) -> "StoredMessage":
        return StoredMessage(
            message_id=message_id,
            sender_id=draft.sender_id,
            receiver_id=draft.receiver_id,
            conversation_id=draft.conversation_id,
            text=draft.text,
            ts=draft.ts,
            message_type=draft.message_type,
            is_scripted=draft.is_scripted,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.message_id,
            "sender": self.sender_id,
            "receiver": self.receiver_id,
            "conversation_id": self.conversation_id,
            "text": self.text,
            "message_type": self.message_type,
            "ts": isoformat(self.ts),
            "is_scripted": self.is_scripted,
            "is_read": self.is_read,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "StoredMessage":
        return StoredMessage(
            message_id=d["id"],
            sender_id=d["sender"],
            receiver_id=d["receiver"],
            conversation_id=d["conversation_id"],
            text=d["text"],
            ts=parse_datetime(d["ts"]),
            message_type=d.get("message_type", MESSAGE_TYPE_TEXT),
            is_scripted=bool(d.get("is_scripted", False)),
            is_read=bool(d.get("is_read", False)),
        )


@dataclass(frozen=True)
class SessionStats:
    total_identities: int
    online_identities: int
    total_conversations: int
    total_messages: int
    personalities: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_identities": self.total_identities,
            "online_identities": self.online_identities,
            "total_conversations": self.total_conversations,
            "total_messages": self.total_messages,
            "personalities": dict(self.personalities),
        }
