# tests/test_responder.py
from __future__ import annotations

import random

import pytest

from Domain.constants import MessageCategory, PersonalityTag
from Domain.models import IdentityProfile
from Services.responder import (
    INITIATIVE_MESSAGES,
    INTEREST_LINE,
    PERSONALITIES,
    RESPONSE_TEMPLATES,
    TemplateResponder,
    TypingDelayConfig,
    classify,
    template_for,
)


# ----------------------------
# classify()
# ----------------------------

@pytest.mark.parametrize(
    "text, expected",
    [
        ("Hi there!", MessageCategory.GREETING),
        ("hello", MessageCategory.GREETING),
        ("Good morning, sunshine", MessageCategory.GREETING),
        ("Hey, how are you?", MessageCategory.GREETING),  # greeting wins over the trailing "?"
        ("What do you like to do?", MessageCategory.QUESTION),
        ("Where are you from?", MessageCategory.QUESTION),
        ("Where are you from?  ", MessageCategory.DEFAULT),  # "?" must be the last character
        ("That sounds amazing", MessageCategory.POSITIVE),
        ("this day was terrible", MessageCategory.NEGATIVE),
        ("my boss called twice", MessageCategory.WORK),
        ("my family visited", MessageCategory.PERSONAL),
        ("I play music on weekends", MessageCategory.HOBBY),
        ("xyz", MessageCategory.DEFAULT),
    ],
)
def test_classify_picks_first_matching_category(text, expected):
    assert classify(text) is expected


@pytest.mark.parametrize("junk", [None, "", "   ", 42, ["hi"], {"text": "hi"}])
def test_classify_never_raises_on_odd_input(junk):
    assert classify(junk) is MessageCategory.DEFAULT


def test_classify_is_case_insensitive():
    assert classify("HELLO") is MessageCategory.GREETING
    assert classify("I HATE mondays") is MessageCategory.NEGATIVE


def test_greeting_is_a_prefix_match():
    assert classify("Hiking is fun") is MessageCategory.GREETING
    assert classify("Heyyy") is MessageCategory.GREETING
    assert classify("history of music?") is MessageCategory.GREETING
    assert classify("  hi") is MessageCategory.DEFAULT
    assert classify("oh hi") is MessageCategory.DEFAULT


# ----------------------------
# template_for()
# ----------------------------

@pytest.mark.parametrize("tag", list(PersonalityTag))
def test_template_for_every_personality_greeting(tag):
    assert template_for(MessageCategory.GREETING, tag) == RESPONSE_TEMPLATES[MessageCategory.GREETING][tag.value]


def test_template_for_unknown_personality_falls_back_to_friendly():
    assert template_for(MessageCategory.QUESTION, "grumpy") == RESPONSE_TEMPLATES[MessageCategory.QUESTION]["friendly"]
    assert template_for(MessageCategory.QUESTION, None) == RESPONSE_TEMPLATES[MessageCategory.QUESTION]["friendly"]


def test_template_for_accepts_mixed_case_tags():
    assert template_for(MessageCategory.DEFAULT, " Casual ") == RESPONSE_TEMPLATES[MessageCategory.DEFAULT]["casual"]


def test_every_category_has_every_personality():
    for category in MessageCategory:
        assert set(RESPONSE_TEMPLATES[category]) == {t.value for t in PersonalityTag}


# ----------------------------
# reply()
# ----------------------------

@pytest.mark.parametrize("tag", list(PersonalityTag))
@pytest.mark.parametrize("greeting", ["Hi there!", "hey", "Good evening!"])
def test_reply_greeting_is_exact_template_without_profile(tag, greeting):
    r = TemplateResponder(seed=1)
    assert r.reply(greeting, tag) == RESPONSE_TEMPLATES[MessageCategory.GREETING][tag.value]


def test_reply_appends_one_interest_line_from_profile():
    profile = IdentityProfile(display_name="Emma", interests=("Hiking", "Coffee"))
    r = TemplateResponder(seed=3)

    text = r.reply("Hi there!", "friendly", (), profile)

    head, sep, tail = text.partition("\n\n")
    assert head == RESPONSE_TEMPLATES[MessageCategory.GREETING]["friendly"]
    assert sep == "\n\n"
    assert tail in {INTEREST_LINE.format(interest=i) for i in profile.interests}


def test_reply_without_interests_or_personalization_is_bare_template():
    empty = IdentityProfile(display_name="Emma", interests=())
    full = IdentityProfile(display_name="Emma", interests=("Art",))
    expected = RESPONSE_TEMPLATES[MessageCategory.QUESTION]["intellectual"]

    assert TemplateResponder(seed=1).reply("why?", "intellectual", (), empty) == expected
    assert TemplateResponder(seed=1, personalize=False).reply("why?", "intellectual", (), full) == expected


def test_reply_is_reproducible_with_seeded_rng():
    profile = IdentityProfile(display_name="Emma", interests=("a", "b", "c", "d", "e"))
    a = TemplateResponder(rng=random.Random(11))
    b = TemplateResponder(rng=random.Random(11))
    assert [a.reply("hi", "flirty", (), profile) for _ in range(5)] == [
        b.reply("hi", "flirty", (), profile) for _ in range(5)
    ]


def test_initiative_text_comes_from_fixed_set():
    r = TemplateResponder(seed=5)
    for _ in range(20):
        assert r.initiative_text("casual") in INITIATIVE_MESSAGES


# ----------------------------
# typing_delay()
# ----------------------------

@pytest.mark.parametrize("seed", range(25))
@pytest.mark.parametrize("length", [None, 0, 5, 80, 10_000])
def test_typing_delay_stays_within_bounds(seed, length):
    cfg = TypingDelayConfig()
    delay = TemplateResponder(cfg, seed=seed).typing_delay(length)
    assert cfg.floor_ms <= delay <= cfg.ceiling_ms <= 5000


def test_typing_delay_is_deterministic_for_fixed_seed():
    a = TemplateResponder(seed=42)
    b = TemplateResponder(seed=42)
    assert [a.typing_delay(n) for n in (None, 10, 200)] == [b.typing_delay(n) for n in (None, 10, 200)]


def test_typing_delay_formula_with_fixed_parts():
    cfg = TypingDelayConfig(
        floor_ms=0, base_ms=1000, random_ms=0, per_char_ms=10.0, length_cap_ms=500,
        multiplier_min=1.0, multiplier_max=1.0, ceiling_ms=5000,
    )
    r = TemplateResponder(cfg, seed=0)
    assert r.typing_delay(20) == 1200
    assert r.typing_delay(100) == 1500  # length part capped


def test_typing_delay_never_exceeds_ceiling():
    cfg = TypingDelayConfig(base_ms=10_000, random_ms=10_000, multiplier_min=1.0, multiplier_max=3.0)
    r = TemplateResponder(cfg, seed=9)
    assert all(r.typing_delay(1000) == cfg.ceiling_ms for _ in range(10))


def test_typing_delay_config_rejects_inverted_bounds():
    with pytest.raises(ValueError):
        TypingDelayConfig(floor_ms=6000, ceiling_ms=5000)
    with pytest.raises(ValueError):
        TypingDelayConfig(multiplier_min=2.0, multiplier_max=1.0)


def test_personality_catalogue_covers_every_tag():
    assert set(PERSONALITIES) == {t.value for t in PersonalityTag}
    assert all(info.traits for info in PERSONALITIES.values())
