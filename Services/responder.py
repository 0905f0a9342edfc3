# companions/Services/responder.py
from __future__ import annotations

import random
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Pattern, Sequence, Tuple

from Domain.constants import DEFAULT_PERSONALITY, MessageCategory, PersonalityTag
from Domain.models import ConversationEntry, IdentityProfile
from Domain.utils import clamp, personality_key


# ----------------------------
# Personalities
# ----------------------------

@dataclass(frozen=True)
class PersonalityInfo:
    name: str
    description: str
    traits: Tuple[str, ...]


PERSONALITIES: Dict[str, PersonalityInfo] = {
    PersonalityTag.FRIENDLY.value: PersonalityInfo(
        name="Friendly",
        description="Warm, approachable, and genuinely interested in others",
        traits=("empathetic", "supportive", "curious", "positive"),
    ),
    PersonalityTag.FLIRTY.value: PersonalityInfo(
        name="Flirty",
        description="Playful, charming, and romantic",
        traits=("playful", "charming", "romantic", "confident"),
    ),
    PersonalityTag.CASUAL.value: PersonalityInfo(
        name="Casual",
        description="Relaxed, easy-going, and natural",
        traits=("relaxed", "natural", "easy-going", "authentic"),
    ),
    PersonalityTag.INTELLECTUAL.value: PersonalityInfo(
        name="Intellectual",
        description="Thoughtful, curious, and engaging",
        traits=("thoughtful", "curious", "analytical", "engaging"),
    ),
}


# ----------------------------
# Templates: category x personality -> text
# ----------------------------

RESPONSE_TEMPLATES: Dict[MessageCategory, Dict[str, str]] = {
    MessageCategory.GREETING: {
        "friendly": "Hey there! 😊 How's your day going?",
        "flirty": "Well hello there! 😉 You're looking quite lovely today!",
        "casual": "Hey! What's up?",
        "intellectual": "Hello! I'm curious about your day. What's been on your mind?",
    },
    MessageCategory.QUESTION: {
        "friendly": "That's really interesting! Tell me more about that! 😊",
        "flirty": "I love how passionate you are about that! Tell me everything! 💕",
        "casual": "Cool! I'd love to hear more about that.",
        "intellectual": "Fascinating! I'd really like to understand your perspective on that.",
    },
    MessageCategory.POSITIVE: {
        "friendly": "I totally agree with you! That's such a great point! 👍",
        "flirty": "You're absolutely right! I love how we think alike! 💫",
        "casual": "Yeah, I'm with you on that one.",
        "intellectual": "Excellent observation! I think you've hit on something important there.",
    },
    MessageCategory.NEGATIVE: {
        "friendly": "I'm sorry you're going through that. I'm here to listen and support you! 💙",
        "flirty": "I hate seeing you down! You're too amazing to feel that way. Let me cheer you up! 💕",
        "casual": "That sounds rough. Want to talk about it?",
        "intellectual": "That's a challenging situation. I'd like to understand more about what you're experiencing.",
    },
    MessageCategory.WORK: {
        "friendly": "Work can be challenging sometimes! I hope you're finding ways to stay positive! 😊",
        "flirty": "I love how dedicated you are to your work! That's really attractive! 💫",
        "casual": "Work stuff, huh? Sometimes it's just part of life.",
        "intellectual": "Work dynamics can be quite complex. I find it interesting how different people approach their careers.",
    },
    MessageCategory.PERSONAL: {
        "friendly": "Relationships and personal connections are so important! I love that you're thinking about that! 💕",
        "flirty": "I love how you think about relationships! It shows you have a beautiful heart! 💖",
        "casual": "Personal stuff is always interesting to talk about.",
        "intellectual": "Personal relationships are fascinating. They reveal so much about human nature and connection.",
    },
    MessageCategory.HOBBY: {
        "friendly": "I love that you're passionate about your interests! That's so inspiring! ✨",
        "flirty": "I love how passionate you are! It's really attractive when someone has interests they care about! 💫",
        "casual": "That's cool! Hobbies make life more interesting.",
        "intellectual": "Personal interests are fascinating. They often reveal a lot about someone's personality and values.",
    },
    MessageCategory.DEFAULT: {
        "friendly": "That's really interesting! I'd love to hear more about your thoughts on that! 😊",
        "flirty": "I love how you think! You're really fascinating! 💕",
        "casual": "That's cool! Tell me more.",
        "intellectual": "That's an interesting perspective. I'd like to understand your thoughts better.",
    },
}

INITIATIVE_MESSAGES: Tuple[str, ...] = (
    "Hey! I noticed we matched and I think you're really interesting! Would love to chat! 😊",
    "Hi there! I'm excited to get to know you better! You seem amazing! ✨",
    "Hello! I couldn't help but be drawn to your profile. Let's talk! 💫",
    "Hey! I think we might have something special here. Want to find out? 😉",
    "Hi! I'm really looking forward to our conversation! You seem wonderful! 💕",
)

INTEREST_LINE = "By the way, I love {interest}! We should definitely talk about that sometime! 💫"


# ----------------------------
# Classification
# ----------------------------

def _rx(pattern: str) -> Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


# Evaluated in order; the first match wins (a greeting that ends in "?" is a greeting).
CATEGORY_PATTERNS: Tuple[Tuple[MessageCategory, Pattern[str]], ...] = (
    (MessageCategory.GREETING, _rx(r"^(hi|hello|hey|good morning|good afternoon|good evening)")),
    (MessageCategory.QUESTION, _rx(r"\?$")),
    (MessageCategory.POSITIVE, _rx(r"(great|amazing|wonderful|awesome|love|like|good|happy|excited)")),
    (MessageCategory.NEGATIVE, _rx(r"(bad|terrible|awful|hate|dislike|sad|angry|frustrated)")),
    (MessageCategory.WORK, _rx(r"(work|job|career|office|meeting|project|boss)")),
    (MessageCategory.PERSONAL, _rx(r"(family|friend|relationship|dating|love|heart)")),
    (MessageCategory.HOBBY, _rx(r"(hobby|interest|passion|fun|enjoy|music|sport|travel)")),
)


def classify(text: Any) -> MessageCategory:
    """Pick exactly one category for a message. Non-text input is DEFAULT."""
    if not isinstance(text, str) or not text.strip():
        return MessageCategory.DEFAULT
    for category, pattern in CATEGORY_PATTERNS:
        if pattern.search(text):
            return category
    return MessageCategory.DEFAULT


def template_for(
    category: MessageCategory,
    personality: Any,
    templates: Mapping[MessageCategory, Mapping[str, str]] = RESPONSE_TEMPLATES,
) -> str:
    by_personality = templates.get(category) or templates[MessageCategory.DEFAULT]
    key = personality_key(personality)
    return by_personality.get(key) or by_personality[DEFAULT_PERSONALITY.value]


# ----------------------------
# Typing delay
# ----------------------------

@dataclass(frozen=True)
class TypingDelayConfig:
    """
    Simulated typing delay, in milliseconds.

    delay = (base + random part + length part) * multiplier, clamped to [floor_ms, ceiling_ms].
    The length part is per_char_ms * message_length (capped at length_cap_ms); with no length
    it is a random fraction of length_cap_ms.
    """
    floor_ms: int = 500
    base_ms: int = 2000
    random_ms: int = 3000
    per_char_ms: float = 15.0
    length_cap_ms: int = 1000
    multiplier_min: float = 0.75
    multiplier_max: float = 1.25
    ceiling_ms: int = 5000

    def __post_init__(self) -> None:
        if self.floor_ms < 0 or self.ceiling_ms < self.floor_ms:
            raise ValueError(f"invalid typing delay bounds: [{self.floor_ms}, {self.ceiling_ms}]")
        if self.multiplier_max < self.multiplier_min:
            raise ValueError("multiplier_max must be >= multiplier_min")


NO_TYPING_DELAY = TypingDelayConfig(
    floor_ms=0, base_ms=0, random_ms=0, per_char_ms=0.0, length_cap_ms=0,
    multiplier_min=1.0, multiplier_max=1.0, ceiling_ms=0,
)


# ----------------------------
# Responder
# ----------------------------

class TemplateResponder:
    """
    Rule-based responder for scripted identities.

    - reply(): classify -> template lookup -> optional interest line
    - initiative_text(): random opening line
    - typing_delay(): bounded simulated composition time

    All randomness goes through the injected generator, so a seeded
    random.Random makes every output reproducible.
    """

    def __init__(
        self,
        typing: Optional[TypingDelayConfig] = None,
        *,
        rng: Optional[random.Random] = None,
        seed: Optional[int] = None,
        templates: Optional[Mapping[MessageCategory, Mapping[str, str]]] = None,
        initiative_messages: Sequence[str] = INITIATIVE_MESSAGES,
        personalize: bool = True,
    ):
        self.typing = typing or TypingDelayConfig()
        self._rng = rng if rng is not None else random.Random(seed)
        self.templates = templates or RESPONSE_TEMPLATES
        self.initiative_messages = tuple(initiative_messages) or INITIATIVE_MESSAGES
        self.personalize = personalize

    def reply(
        self,
        user_text: Any,
        personality: Any,
        recent_context: Sequence[ConversationEntry] = (),
        profile: Optional[IdentityProfile] = None,
    ) -> str:
        category = classify(user_text)
        text = template_for(category, personality, self.templates)

        interest = self._pick_interest(profile)
        if interest:
            return f"{text}\n\n{INTEREST_LINE.format(interest=interest)}"
        return text

    def initiative_text(self, personality: Any = None) -> str:
        return self._rng.choice(self.initiative_messages)

    def typing_delay(self, message_length: Optional[int] = None) -> int:
        cfg = self.typing
        base = clamp(cfg.base_ms, 0, cfg.ceiling_ms)
        rand_part = clamp(self._rng.random() * cfg.random_ms, 0, max(0, cfg.random_ms))
        if message_length is None:
            length_part = self._rng.random() * cfg.length_cap_ms
        else:
            length_part = cfg.per_char_ms * max(0, int(message_length))
        length_part = clamp(length_part, 0, max(0, cfg.length_cap_ms))
        multiplier = self._rng.uniform(cfg.multiplier_min, cfg.multiplier_max)

        total = (base + rand_part + length_part) * multiplier
        return int(clamp(total, cfg.floor_ms, cfg.ceiling_ms))

    def _pick_interest(self, profile: Optional[IdentityProfile]) -> str:
        if not self.personalize or profile is None:
            return ""
        interests: List[str] = [i for i in (profile.interests or ()) if isinstance(i, str) and i.strip()]
        if not interests:
            return ""
        return self._rng.choice(interests)


