# tests/test_jsonl_message_store.py
from __future__ import annotations

import asyncio
import json
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List

from Domain.models import IdentityProfile, IdentityRecord, MessageDraft, StoredMessage
from Infra.in_memory_stores import InMemoryIdentityStore
from Infra.inmemory_pubsub import InMemoryPubSub
from Infra.jsonl_message_store import JSONLMessageStore
from Services.memory_store import ConversationMemoryStore
from Services.responder import NO_TYPING_DELAY, TemplateResponder
from Services.session_context import SessionContext
from Services.session_manager import SessionManager


def t0() -> datetime:
    return datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def draft(text: str, *, sender: str = "alice", receiver: str = "emma", conversation_id: str = "c1", minutes: int = 0) -> MessageDraft:
    return MessageDraft(
        sender_id=sender,
        receiver_id=receiver,
        conversation_id=conversation_id,
        text=text,
        ts=t0() + timedelta(minutes=minutes),
        is_scripted=sender == "emma",
    )


def read_jsonl(path: Path) -> List[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


def test_save_appends_one_line_and_returns_handle(tmp_path: Path):
    path = tmp_path / "nested" / "messages.jsonl"
    store = JSONLMessageStore(path=str(path))

    stored = asyncio.run(store.save(draft("hi")))

    assert stored.message_id
    assert stored.ts == t0()
    rows = read_jsonl(path)
    assert len(rows) == 1
    assert rows[0]["id"] == stored.message_id
    assert rows[0]["text"] == "hi"
    assert rows[0]["is_read"] is False


def test_history_survives_reopen_and_respects_limit(tmp_path: Path):
    path = tmp_path / "messages.jsonl"

    async def write():
        store = JSONLMessageStore(path=str(path))
        for i in range(5):
            await store.save(draft(f"m{i}", minutes=i))
        await store.save(draft("other", conversation_id="c2"))

    asyncio.run(write())
    reopened = JSONLMessageStore(path=str(path))

    assert [m.text for m in reopened.history("c1")] == ["m0", "m1", "m2", "m3", "m4"]
    assert [m.text for m in reopened.history("c1", limit=2)] == ["m3", "m4"]
    assert reopened.history("c1", limit=0) == []
    assert [m.text for m in reopened.history("c2")] == ["other"]


def test_mark_read_is_folded_back_on_read(tmp_path: Path):
    path = tmp_path / "messages.jsonl"
    store = JSONLMessageStore(path=str(path))

    async def scenario():
        await store.save(draft("hi"))
        await store.save(draft("hey!", sender="emma", receiver="alice"))
        await store.save(draft("how are you?", sender="emma", receiver="alice"))
        first = await store.mark_read("c1", "alice")
        again = await store.mark_read("c1", "alice")
        return first, again

    assert asyncio.run(scenario()) == (2, 0)

    messages = JSONLMessageStore(path=str(path)).history("c1")
    assert [(m.receiver_id, m.is_read) for m in messages] == [
        ("emma", False), ("alice", True), ("alice", True),
    ]


def test_bad_lines_are_skipped(tmp_path: Path):
    path = tmp_path / "messages.jsonl"
    store = JSONLMessageStore(path=str(path))
    asyncio.run(store.save(draft("kept")))

    with path.open("a", encoding="utf-8") as f:
        f.write("{not json\n")
        f.write("[1, 2, 3]\n")
        f.write('{"id": "x"}\n')
        f.write("\n")

    assert [m.text for m in store.iter_messages()] == ["kept"]


# ============================================================
# Event loop stays free during file I/O
# ============================================================

class SlowDiskStore(JSONLMessageStore):
    """Every write to `slow-conv` stalls its thread for half a second."""

    def _append_message(self, stored: StoredMessage) -> None:
        if stored.conversation_id == "slow-conv":
            time.sleep(0.5)
        super()._append_message(stored)


def test_slow_save_does_not_delay_another_conversation(tmp_path: Path):
    store = SlowDiskStore(path=str(tmp_path / "messages.jsonl"))
    ctx = SessionContext(memory=ConversationMemoryStore())
    manager = SessionManager(
        context=ctx,
        responder=TemplateResponder(NO_TYPING_DELAY, seed=1),
        identity_store=InMemoryIdentityStore([
            IdentityRecord(identity_id="emma", profile=IdentityProfile(display_name="Emma", personality="friendly"), is_scripted=True),
            IdentityRecord(identity_id="marcus", profile=IdentityProfile(display_name="Marcus", personality="casual"), is_scripted=True),
        ]),
        message_store=store,
        transport=InMemoryPubSub(),
    )

    def inbound(conversation_id: str, receiver: str) -> dict:
        return {"sender_id": "alice", "receiver_id": receiver, "conversation_id": conversation_id, "text": "hey"}

    async def scenario():
        await manager.initialize_identities()
        slow = manager.submit(inbound("slow-conv", "emma"))
        await asyncio.sleep(0.05)  # slow reply is now inside its save

        started = time.monotonic()
        fast_ok = await manager.handle_incoming(inbound("fast-conv", "marcus"))
        elapsed = time.monotonic() - started

        slow_pending = not slow.done()
        slow_ok = await slow
        return fast_ok, elapsed, slow_pending, slow_ok

    fast_ok, elapsed, slow_pending, slow_ok = asyncio.run(scenario())

    assert fast_ok is True
    assert slow_pending is True
    assert elapsed < 0.3
    assert slow_ok is True
    assert [m.conversation_id for m in store.iter_messages()] == ["fast-conv", "slow-conv"]
