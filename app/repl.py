# app/repl.py
from __future__ import annotations

import argparse
import asyncio
import json
import threading
from datetime import timedelta
from typing import Any, Dict, Optional, Set

from Domain.constants import EventName
from Infra.in_memory_stores import InMemoryIdentityStore, InMemoryMatchStore
from Infra.inmemory_pubsub import InMemoryPubSub, Subscription
from Infra.jsonl_message_store import JSONLMessageStore
from Services.chat_gateway import ChatGateway
from Services.initiative_scheduler import InitiativeScheduler
from Services.memory_store import ConversationMemoryStore
from Services.responder import PERSONALITIES, TemplateResponder
from Services.session_context import SessionContext
from Services.session_manager import SessionManager
from app.seed import seed_records
from app.settings import configure_logging, load_settings


# ----------------------------
# Pretty helpers
# ----------------------------

class ConsoleUI:
    """Print without the input prompt contaminating the output (input() runs in a worker thread)."""

    def __init__(self, prompt: str = "> "):
        self.prompt = prompt
        self.prompt_active = False
        self._lock = threading.Lock()

    def print(self, s: str) -> None:
        with self._lock:
            if self.prompt_active:
                print()
            print(s)
            if self.prompt_active:
                print(self.prompt, end="", flush=True)

    def read_line(self) -> str:
        with self._lock:
            self.prompt_active = True
        try:
            return input(self.prompt)
        finally:
            with self._lock:
                self.prompt_active = False


def _describe(event: str, payload: Dict[str, Any], names: Dict[str, str], me: str) -> Optional[str]:
    if event == EventName.USER_TYPING.value:
        who = payload.get("identity_id", "")
        if who == me:
            return None
        state = "is typing..." if payload.get("is_typing") else "stopped typing"
        return f"  ({names.get(who, who)} {state})"
    if event == EventName.RECEIVE_MESSAGE.value:
        if payload.get("sender") == me:
            return None
        name = payload.get("sender_name") or names.get(payload.get("sender", ""), "?")
        return f"{name}: {payload.get('text', '')}"
    if event == EventName.MESSAGES_READ.value:
        return f"  (read receipt: {payload.get('count', 0)} messages)"
    return None


def _personality_label(tag: str) -> str:
    info = PERSONALITIES.get(tag)
    return f"{info.name}: {info.description}" if info else tag


def _report_initiative(task: "asyncio.Task[bool]", ui: ConsoleUI, pending: Set["asyncio.Task[bool]"]) -> None:
    """Done-callback of a /initiative task: forget it and say how it went."""
    pending.discard(task)
    if task.cancelled():
        ui.print("[repl] initiative cancelled")
        return
    exc = task.exception()
    if exc is not None:
        ui.print(f"[repl] initiative failed: {exc!r}")
    elif task.result():
        ui.print("[repl] initiative sent")
    else:
        ui.print("[repl] initiative not sent (identity inactive or one already in flight)")


async def _print_events(sub: Subscription, ui: ConsoleUI, names: Dict[str, str], me: str) -> None:
    while True:
        _, event, payload = await sub.get()
        line = _describe(event, payload, names, me)
        if line:
            ui.print(line)


# ----------------------------
# REPL
# ----------------------------

HELP = [
    "Commands:",
    "  /quit",
    "  /help",
    "  /who          (active scripted identities)",
    "  /stats        (session statistics)",
    "  /memory       (conversation memory of this chat)",
    "  /initiative   (force an initiative message now)",
    "  /clear        (clear this chat's memory)",
]


async def run(companion_id: str, human_id: str, debug: bool) -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    ui = ConsoleUI()

    identity_store = InMemoryIdentityStore(seed_records())
    match_store = InMemoryMatchStore()
    message_store = JSONLMessageStore(path=settings.messages_path)
    pubsub = InMemoryPubSub()

    ctx = SessionContext(memory=ConversationMemoryStore(max_history=settings.max_history))
    manager = SessionManager(
        context=ctx,
        responder=TemplateResponder(settings.typing, seed=settings.seed),
        identity_store=identity_store,
        message_store=message_store,
        transport=pubsub,
        cfg=settings.session,
        debug=debug,
        debug_print=ui.print,
    )
    scheduler = InitiativeScheduler(
        manager=manager,
        context=ctx,
        match_store=match_store,
        cfg=settings.scheduler,
    )
    gateway = ChatGateway(
        manager=manager,
        message_store=message_store,
        match_store=match_store,
        transport=pubsub,
    )

    await manager.initialize_identities()
    if not manager.is_scripted(companion_id):
        ui.print(f"[repl] unknown companion {companion_id!r}; try one of: "
                 + ", ".join(i.identity_id for i in manager.active_identities()))
        return

    conversation_id = f"chat-{human_id}-{companion_id}"
    match_store.add(conversation_id, human_id, companion_id)
    names = {i.identity_id: i.display_name for i in manager.active_identities()}

    sub = pubsub.subscribe(conversation_id)
    printer = asyncio.ensure_future(_print_events(sub, ui, names, human_id))
    scheduler.start()

    pending: Set["asyncio.Task[bool]"] = set()
    ui.print(f"Chatting with {names[companion_id]} ({manager.personality_of(companion_id)}). /help for commands.")

    try:
        while True:
            try:
                line = await asyncio.to_thread(ui.read_line)
            except EOFError:
                break
            s = line.strip()
            if not s:
                continue

            if s.startswith("/"):
                cmd = s.split()[0].lower()
                if cmd == "/quit":
                    break
                if cmd == "/help":
                    for h in HELP:
                        ui.print(h)
                elif cmd == "/who":
                    for i in manager.active_identities():
                        ui.print(f"  {i.identity_id}: {i.display_name} ({_personality_label(i.personality)}) interactions={i.interaction_count}")
                elif cmd == "/stats":
                    ui.print(json.dumps(manager.stats().to_dict(), indent=2))
                elif cmd == "/memory":
                    memory = manager.conversation_memory(conversation_id)
                    ui.print(json.dumps(memory.to_dict() if memory else None, ensure_ascii=False, indent=2))
                elif cmd == "/initiative":
                    memory = manager.conversation_memory(conversation_id)
                    if memory is None:
                        ui.print("[repl] say something first; there is no conversation memory yet")
                        continue
                    later = memory.last_activity() + timedelta(seconds=settings.session.idle_threshold_seconds)
                    task = asyncio.ensure_future(manager.initiate_conversation(conversation_id, now=later))
                    pending.add(task)
                    task.add_done_callback(lambda t: _report_initiative(t, ui, pending))
                elif cmd == "/clear":
                    manager.clear_conversation(conversation_id)
                    ui.print("[repl] memory cleared")
                else:
                    ui.print(f"[repl] Unknown command: {s}")
                continue

            await gateway.handle_message({
                "sender_id": human_id,
                "receiver_id": companion_id,
                "conversation_id": conversation_id,
                "text": line,
            })
    finally:
        for task in list(pending):
            task.cancel()
        await scheduler.stop()
        await ctx.close()
        printer.cancel()
        pubsub.unsubscribe(sub)
        ui.print("Bye.")


def main() -> None:
    parser = argparse.ArgumentParser(description="Chat with a scripted companion")
    parser.add_argument("--companion", default="companion-emma", help="scripted identity id")
    parser.add_argument("--human", default="you", help="your user id")
    parser.add_argument("--debug", action="store_true", help="print session debug lines")
    args = parser.parse_args()

    try:
        asyncio.run(run(args.companion, args.human, args.debug))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
