# companions/Domain/schemas.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator

from Domain.constants import MESSAGE_TYPE_TEXT
from Domain.models import StoredMessage, TypingEvent


class IncomingMessage(BaseModel):
    """
    Inbound chat message contract (human -> someone).

    The gateway validates raw socket payloads into this model before handing
    them to the SessionManager. Text is kept as-is: classification never fails
    on odd input, it just falls through to the default category.
    """
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=False)

    sender_id: str = Field(..., min_length=1, alias="senderId")
    receiver_id: str = Field(..., min_length=1, alias="receiverId")
    conversation_id: str = Field(..., min_length=1, alias="conversationId")
    text: str = Field("", alias="content", description="Message body.")
    message_type: str = Field(MESSAGE_TYPE_TEXT, alias="messageType")

    @field_validator("text", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> str:
        if v is None:
            return ""
        return v if isinstance(v, str) else str(v)


class TypingPayload(BaseModel):
    """Payload of the `user_typing` event."""
    identity_id: str
    conversation_id: str
    is_typing: bool

    @staticmethod
    def from_event(event: TypingEvent) -> "TypingPayload":
        return TypingPayload(
            identity_id=event.identity_id,
            conversation_id=event.conversation_id,
            is_typing=event.is_typing,
        )


class MessageDeliveryPayload(BaseModel):
    """
    Payload of the `receive_message` event: the stored-message handle plus the
    sender's display name and the scripted-sender flag.
    """
    id: str
    sender: str
    receiver: str
    conversation_id: str
    text: str
    message_type: str = MESSAGE_TYPE_TEXT
    ts: datetime
    is_read: bool = False
    sender_name: str = ""
    is_scripted: bool = False

    @staticmethod
    def from_stored(msg: StoredMessage, *, sender_name: str = "", is_scripted: bool = False) -> "MessageDeliveryPayload":
        return MessageDeliveryPayload(
            id=msg.message_id,
            sender=msg.sender_id,
            receiver=msg.receiver_id,
            conversation_id=msg.conversation_id,
            text=msg.text,
            message_type=msg.message_type,
            ts=msg.ts,
            is_read=msg.is_read,
            sender_name=sender_name,
            is_scripted=is_scripted,
        )


class ReadReceiptPayload(BaseModel):
    """Payload of the `messages_read` event."""
    conversation_id: str
    reader_id: str
    count: int = Field(0, ge=0)


def to_wire(model: BaseModel) -> Dict[str, Any]:
    """JSON-safe dict for the transport (datetimes as ISO strings)."""
    return model.model_dump(mode="json")
