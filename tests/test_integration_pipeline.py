# tests/test_integration_pipeline.py
from __future__ import annotations

import asyncio
import json
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from Domain.constants import EventName, MessageCategory, SpeakerRole
from Infra.in_memory_stores import InMemoryIdentityStore, InMemoryMatchStore
from Infra.inmemory_pubsub import InMemoryPubSub
from Infra.jsonl_message_store import JSONLMessageStore
from Services.chat_gateway import ChatGateway
from Services.initiative_scheduler import InitiativeScheduler
from Services.memory_store import ConversationMemoryStore
from Services.responder import INITIATIVE_MESSAGES, INTEREST_LINE, NO_TYPING_DELAY, RESPONSE_TEMPLATES, TemplateResponder
from Services.session_context import SessionContext
from Services.session_manager import SessionManager
from app.seed import SEED_PROFILES, seed_records


# ----------------------------
# Helpers
# ----------------------------

def t0() -> datetime:
    return datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@dataclass
class FakeClock:
    now_value: datetime

    def now(self) -> datetime:
        return self.now_value


@dataclass
class App:
    manager: SessionManager
    scheduler: InitiativeScheduler
    gateway: ChatGateway
    matches: InMemoryMatchStore
    messages: JSONLMessageStore
    pubsub: InMemoryPubSub
    clock: FakeClock


def build_app(tmp_path: Path, *, seed: int = 7) -> App:
    """Same wiring as the console app, with a fake clock and no typing delay."""
    clock = FakeClock(t0())
    matches = InMemoryMatchStore()
    messages = JSONLMessageStore(path=str(tmp_path / "messages.jsonl"))
    pubsub = InMemoryPubSub(keep_history=True)
    ctx = SessionContext(memory=ConversationMemoryStore(clock=clock))

    manager = SessionManager(
        context=ctx,
        responder=TemplateResponder(NO_TYPING_DELAY, rng=random.Random(seed)),
        identity_store=InMemoryIdentityStore(seed_records()),
        message_store=messages,
        transport=pubsub,
        clock=clock,
    )
    scheduler = InitiativeScheduler(manager=manager, context=ctx, match_store=matches, clock=clock)
    gateway = ChatGateway(manager=manager, message_store=messages, match_store=matches, transport=pubsub, clock=clock)
    return App(manager, scheduler, gateway, matches, messages, pubsub, clock)


def interests_of(identity_id: str) -> List[str]:
    for p in SEED_PROFILES:
        if p["id"] == identity_id:
            return list(p["interests"])
    raise KeyError(identity_id)


def assert_template_reply(text: str, expected: str, interests: List[str]) -> None:
    """Template text, optionally followed by exactly one interest line."""
    head, _, tail = text.partition("\n\n")
    assert head == expected
    if tail:
        assert tail in {INTEREST_LINE.format(interest=i) for i in interests}


async def say(app: App, text: str, conversation_id: str, identity_id: str, human: str = "alice") -> bool:
    app.matches.add(conversation_id, human, identity_id)
    return await app.manager.handle_incoming({
        "sender_id": human,
        "receiver_id": identity_id,
        "conversation_id": conversation_id,
        "text": text,
    })


def published(app: App, conversation_id: str, event: EventName) -> List[dict]:
    return [p for _, _, p in app.pubsub.events(conversation_id, event.value)]


def read_jsonl(path: Path) -> List[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


# ----------------------------
# Integration tests
# ----------------------------

def test_greeting_gets_friendly_template_and_two_memory_entries(tmp_path: Path):
    app = build_app(tmp_path)

    async def scenario():
        await app.manager.initialize_identities()
        return await say(app, "Hi there!", "C1", "companion-emma")

    assert asyncio.run(scenario()) is True
    assert app.manager.personality_of("companion-emma") == "friendly"

    memory = app.manager.conversation_memory("C1")
    assert [e.role for e in memory.entries] == [SpeakerRole.HUMAN, SpeakerRole.SCRIPT]
    assert_template_reply(
        memory.entries[1].text,
        RESPONSE_TEMPLATES[MessageCategory.GREETING]["friendly"],
        interests_of("companion-emma"),
    )

    rows = read_jsonl(tmp_path / "messages.jsonl")
    assert [(r["sender"], r["receiver"], r["is_scripted"]) for r in rows] == [("companion-emma", "alice", True)]

    [delivery] = published(app, "C1", EventName.RECEIVE_MESSAGE)
    assert delivery["sender_name"] == "Emma Wilson"
    assert delivery["text"] == memory.entries[1].text


def test_question_without_greeting_gets_question_template(tmp_path: Path):
    app = build_app(tmp_path)

    async def scenario():
        await app.manager.initialize_identities()
        return await say(app, "What do you like to do?", "C4", "companion-sophia")

    assert asyncio.run(scenario()) is True
    memory = app.manager.conversation_memory("C4")
    assert_template_reply(
        memory.entries[-1].text,
        RESPONSE_TEMPLATES[MessageCategory.QUESTION]["intellectual"],
        interests_of("companion-sophia"),
    )


def test_sweep_sends_one_initiative_to_a_three_hour_old_conversation(tmp_path: Path):
    app = build_app(tmp_path)

    async def scenario():
        await app.manager.initialize_identities()
        await say(app, "hey", "C2", "companion-marcus")
        before = app.manager.conversation_memory("C2").message_count
        app.clock.now_value = t0() + timedelta(hours=3)
        sent = await app.scheduler.sweep()
        return before, sent

    before, sent = asyncio.run(scenario())
    assert sent == 1

    memory = app.manager.conversation_memory("C2")
    assert memory.message_count == before + 1
    assert memory.entries[-1].text in INITIATIVE_MESSAGES

    deliveries = published(app, "C2", EventName.RECEIVE_MESSAGE)
    assert len(deliveries) == 2
    assert deliveries[-1]["text"] in INITIATIVE_MESSAGES
    assert deliveries[-1]["receiver"] == "alice"


def test_sweep_leaves_a_ten_minute_old_conversation_alone(tmp_path: Path):
    app = build_app(tmp_path)

    async def scenario():
        await app.manager.initialize_identities()
        await say(app, "hey", "C3", "companion-isabella")
        app.clock.now_value = t0() + timedelta(minutes=10)
        return await app.scheduler.sweep()

    assert asyncio.run(scenario()) == 0
    assert len(published(app, "C3", EventName.RECEIVE_MESSAGE)) == 1
    assert app.manager.conversation_memory("C3").message_count == 2


def test_gateway_subscriber_sees_full_choreography(tmp_path: Path):
    app = build_app(tmp_path)

    async def scenario():
        await app.manager.initialize_identities()
        app.matches.add("C5", "alice", "companion-emma")
        sub = app.pubsub.subscribe("C5")
        await app.gateway.handle_typing("C5", "alice", True)
        await app.gateway.handle_message({
            "senderId": "alice",
            "receiverId": "companion-emma",
            "conversationId": "C5",
            "content": "I had a terrible day",
        })
        while app.manager._inbound:
            await asyncio.gather(*list(app.manager._inbound))
        read = await app.gateway.handle_read("C5", "alice")
        events = sub.drain()
        app.pubsub.unsubscribe(sub)
        return read, events

    read, events = asyncio.run(scenario())
    assert read == 1

    names = [(e[1], e[2].get("identity_id") or e[2].get("sender") or e[2].get("reader_id")) for e in events]
    assert names == [
        (EventName.USER_TYPING.value, "alice"),
        (EventName.RECEIVE_MESSAGE.value, "alice"),
        (EventName.USER_TYPING.value, "companion-emma"),
        (EventName.USER_TYPING.value, "companion-emma"),
        (EventName.RECEIVE_MESSAGE.value, "companion-emma"),
        (EventName.MESSAGES_READ.value, "alice"),
    ]
    assert_template_reply(
        events[4][2]["text"],
        RESPONSE_TEMPLATES[MessageCategory.NEGATIVE]["friendly"],
        interests_of("companion-emma"),
    )

    history = app.messages.history("C5")
    assert [m.sender_id for m in history] == ["alice", "companion-emma"]
    assert history[1].is_read is True


def test_deactivated_identity_never_sends_initiative(tmp_path: Path):
    app = build_app(tmp_path)

    async def scenario():
        await app.manager.initialize_identities()
        await say(app, "hey", "C6", "companion-emma")
        app.clock.now_value = t0() + timedelta(hours=4)
        ok = await app.manager.deactivate("companion-emma")
        sent = await app.scheduler.sweep()
        direct: Optional[bool] = await app.manager.initiate_conversation("C6")
        return ok, sent, direct

    assert asyncio.run(scenario()) == (True, 0, False)
    assert len(published(app, "C6", EventName.RECEIVE_MESSAGE)) == 1
