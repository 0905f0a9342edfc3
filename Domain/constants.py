# companions/Domain/constants.py
from __future__ import annotations

from enum import Enum


class PersonalityTag(str, Enum):
    """Template set a scripted identity speaks with."""
    FRIENDLY = "friendly"
    FLIRTY = "flirty"
    CASUAL = "casual"
    INTELLECTUAL = "intellectual"


class SpeakerRole(str, Enum):
    """Who said a line in a conversation memory."""
    HUMAN = "human"
    SCRIPT = "script"


class MessageCategory(str, Enum):
    """Classification of an inbound human message (priority order)."""
    GREETING = "greeting"
    QUESTION = "question"
    POSITIVE = "positive"
    NEGATIVE = "negative"
    WORK = "work"
    PERSONAL = "personal"
    HOBBY = "hobby"
    DEFAULT = "default"


class EventName(str, Enum):
    """Events published to chat-room subscribers."""
    USER_TYPING = "user_typing"
    RECEIVE_MESSAGE = "receive_message"
    MESSAGES_READ = "messages_read"


class DeliveryKind(str, Enum):
    REPLY = "reply"
    INITIATIVE = "initiative"


DEFAULT_PERSONALITY = PersonalityTag.FRIENDLY
MESSAGE_TYPE_TEXT = "text"
