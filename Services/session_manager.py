# companions/Services/session_manager.py
from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional, Set, Union

from pydantic import ValidationError

from Domain.constants import DeliveryKind, EventName, SpeakerRole
from Domain.errors import MissingMemoryError
from Domain.models import (
    ConversationMemory,
    MessageDraft,
    ScriptedIdentity,
    SessionStats,
    TypingEvent,
)
from Domain.schemas import IncomingMessage, MessageDeliveryPayload, TypingPayload, to_wire
from Domain.utils import personality_key, utc_now
from Services.ports import IClock, IIdentityStore, IMessageStore, IResponder, ITransport
from Services.session_context import SessionContext

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "I'm having trouble thinking of a response right now. Can we talk about something else?"

Inbound = Union[IncomingMessage, Mapping[str, Any]]


# ----------------------------
# Config
# ----------------------------

@dataclass(frozen=True)
class SessionConfig:
    """
    Knobs for the scripted-identity session layer.

    - context_messages: how many recent entries the responder sees
    - idle_threshold_seconds: a conversation idle this long may receive an initiative message
    - fallback_reply: sent when reply generation fails
    """
    context_messages: int = 10
    idle_threshold_seconds: int = 2 * 60 * 60
    fallback_reply: str = FALLBACK_REPLY


# ----------------------------
# Session Manager
# ----------------------------

class SessionManager:
    """
    Owns the scripted-identity lifecycle and the inbound -> reply cycle:

      inbound message
        -> gate: is the receiver an active scripted identity?
        -> memory get_or_create + append (human)
        -> responder.reply() (errors -> fallback text)
        -> typing started -> wait typing_delay -> typing stopped
        -> memory still there? -> persist -> append (script) -> publish

    Initiative messages re-enter the same pipeline from "typing started".

    Every delivery runs as its own task registered in the SessionContext,
    so deactivate()/clear_conversation() can cancel it mid-wait.
    Resource failures come back as False; nothing is raised past an operation.
    """

    def __init__(
        self,
        *,
        context: SessionContext,
        responder: IResponder,
        identity_store: IIdentityStore,
        message_store: IMessageStore,
        transport: ITransport,
        cfg: Optional[SessionConfig] = None,
        clock: Optional[IClock] = None,
        debug: bool = False,
        debug_print: Optional[Callable[[str], None]] = None,
    ):
        self.ctx = context
        self.responder = responder
        self.identity_store = identity_store
        self.message_store = message_store
        self.transport = transport
        self.cfg = cfg or SessionConfig()
        self.clock = clock

        self.debug = bool(debug)
        self.debug_print = debug_print or print

        self._inbound: Set[asyncio.Task] = set()
        self._initiating: Set[str] = set()

    # ---------
    # Identity lifecycle
    # ---------

    async def initialize_identities(self) -> int:
        """Activate every scripted identity known to the identity store. Returns how many came up."""
        try:
            records = await self.identity_store.list_scripted()
        except Exception:
            logger.exception("listing scripted identities failed")
            return 0

        n = 0
        for record in records:
            if await self.activate(record.identity_id):
                n += 1
        logger.info("initialized %d of %d scripted identities", n, len(records))
        return n

    async def activate(self, identity_id: str, personality: Optional[str] = None) -> bool:
        try:
            record = await self.identity_store.get_identity(identity_id)
        except Exception:
            logger.exception("identity lookup failed for activation: %s", identity_id)
            return False
        if record is None:
            logger.error("identity not found for activation: %s", identity_id)
            return False

        tag = personality_key(personality if personality is not None else record.profile.personality)
        now = self._now()

        identity = self.ctx.active.get(identity_id)
        created = identity is None
        if identity is None:
            identity = ScriptedIdentity(
                identity_id=identity_id,
                display_name=record.profile.display_name or identity_id,
                personality=tag,
                profile=record.profile,
                last_active=now,
            )
            self.ctx.active[identity_id] = identity
        else:
            identity.personality = tag
            identity.last_active = now
            identity.is_online = True

        try:
            await self.identity_store.set_presence(identity_id, online=True, last_active=now)
        except Exception:
            logger.exception("marking %s online failed", identity_id)
            if created:
                self.ctx.active.pop(identity_id, None)
            return False

        logger.info("activated scripted identity %s (%s, %s)", identity.display_name, identity_id, tag)
        return True

    async def deactivate(self, identity_id: str) -> bool:
        identity = self.ctx.active.pop(identity_id, None)

        cancelled = self.ctx.cancel_identity(identity_id)
        dropped = self.ctx.memory.drop_identity(identity_id)
        for cid in dropped:
            self.ctx.forget_conversation(cid)

        try:
            if identity is None and await self.identity_store.get_identity(identity_id) is None:
                logger.error("cannot deactivate unknown identity %s", identity_id)
                return False
            await self.identity_store.set_presence(identity_id, online=False, last_active=self._now())
        except Exception:
            logger.exception("marking %s offline failed", identity_id)
            return False

        logger.info(
            "deactivated scripted identity %s (cancelled=%d, dropped_conversations=%d)",
            identity_id, cancelled, len(dropped),
        )
        return True

    # ---------
    # Inbound messages
    # ---------

    def submit(self, message: Inbound) -> Optional["asyncio.Task[bool]"]:
        """
        Accept-path entry point: start handle_incoming() in the background and return
        immediately, so one conversation's typing delay never holds up the next message.
        Returns None when the receiver is not an active scripted identity.
        """
        receiver_id = _receiver_of(message)
        if receiver_id is None or receiver_id not in self.ctx.active:
            return None
        task = asyncio.ensure_future(self.handle_incoming(message))
        self._inbound.add(task)
        task.add_done_callback(self._inbound.discard)
        return task

    async def handle_incoming(self, message: Inbound) -> bool:
        try:
            msg = message if isinstance(message, IncomingMessage) else IncomingMessage.model_validate(message)
        except ValidationError as e:
            logger.warning("rejecting malformed inbound message: %s", e)
            return False

        identity = self.ctx.active.get(msg.receiver_id)
        if identity is None:
            return False

        now = self._now()
        identity.last_active = now
        identity.interaction_count += 1

        memory = self.ctx.memory.get_or_create(
            msg.conversation_id,
            identity.identity_id,
            msg.sender_id,
            identity.personality,
        )
        self.ctx.memory.append(msg.conversation_id, SpeakerRole.HUMAN, msg.text, ts=now)
        self._dbg(f"inbound conv={msg.conversation_id} from={msg.sender_id} chars={len(msg.text)}")

        reply = self._generate_reply(memory, identity, msg.text)
        return await self._run_delivery(
            identity,
            msg.conversation_id,
            receiver_id=msg.sender_id,
            text=reply,
            kind=DeliveryKind.REPLY,
        )

    # ---------
    # Initiative
    # ---------

    async def initiate_conversation(self, conversation_id: str, *, now: Optional[datetime] = None) -> bool:
        """
        Send one unprompted message into an idle conversation.
        False when there is no memory, the identity is inactive, the conversation
        is not idle long enough, or an initiative is already in flight.
        """
        memory = self.ctx.memory.get(conversation_id)
        if memory is None:
            logger.warning("no conversation memory for %s; initiative skipped", conversation_id)
            return False

        identity = self.ctx.active.get(memory.scripted_identity_id)
        if identity is None:
            logger.warning("identity %s not active; initiative skipped", memory.scripted_identity_id)
            return False

        now = now or self._now()
        if memory.idle_seconds(now) < self.cfg.idle_threshold_seconds:
            return False
        if conversation_id in self._initiating:
            return False

        try:
            text = self.responder.initiative_text(identity.personality)
            if not text or not text.strip():
                raise ValueError("responder returned an empty initiative message")
        except Exception:
            logger.exception("initiative generation failed for %s", conversation_id)
            text = self.cfg.fallback_reply

        self._initiating.add(conversation_id)
        try:
            return await self._run_delivery(
                identity,
                conversation_id,
                receiver_id=memory.human_id,
                text=text,
                kind=DeliveryKind.INITIATIVE,
            )
        finally:
            self._initiating.discard(conversation_id)

    # ---------
    # Queries
    # ---------

    def is_scripted(self, identity_id: str) -> bool:
        return identity_id in self.ctx.active

    def personality_of(self, identity_id: str) -> Optional[str]:
        identity = self.ctx.active.get(identity_id)
        return identity.personality if identity else None

    def active_identities(self) -> List[ScriptedIdentity]:
        return list(self.ctx.active.values())

    def conversation_memory(self, conversation_id: str) -> Optional[ConversationMemory]:
        return self.ctx.memory.get(conversation_id)

    def clear_conversation(self, conversation_id: str) -> bool:
        cancelled = self.ctx.cancel_conversation(conversation_id)
        existed = self.ctx.memory.clear(conversation_id)
        self.ctx.forget_conversation(conversation_id)
        logger.info("cleared conversation memory for %s (cancelled=%d)", conversation_id, cancelled)
        return existed

    def stats(self) -> SessionStats:
        identities = list(self.ctx.active.values())
        return SessionStats(
            total_identities=len(identities),
            online_identities=sum(1 for i in identities if i.is_online),
            total_conversations=len(self.ctx.memory),
            total_messages=self.ctx.memory.total_messages(),
            personalities=dict(Counter(i.personality for i in identities)),
        )

    # ---------
    # Internals
    # ---------

    def _generate_reply(self, memory: ConversationMemory, identity: ScriptedIdentity, text: str) -> str:
        try:
            reply = self.responder.reply(
                text,
                identity.personality,
                memory.recent(self.cfg.context_messages),
                identity.profile,
            )
            if not reply or not reply.strip():
                raise ValueError("responder returned an empty reply")
            return reply
        except Exception:
            logger.exception("reply generation failed for %s; using fallback", memory.conversation_id)
            return self.cfg.fallback_reply

    async def _run_delivery(
        self,
        identity: ScriptedIdentity,
        conversation_id: str,
        *,
        receiver_id: str,
        text: str,
        kind: DeliveryKind,
    ) -> bool:
        task = self.ctx.track(
            identity.identity_id,
            conversation_id,
            self._deliver(identity, conversation_id, receiver_id, text, kind),
            name=f"{kind.value}:{conversation_id}",
        )
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            logger.info("%s for %s cancelled before delivery", kind.value, conversation_id)
            return False

    async def _deliver(
        self,
        identity: ScriptedIdentity,
        conversation_id: str,
        receiver_id: str,
        text: str,
        kind: DeliveryKind,
    ) -> bool:
        iid = identity.identity_id
        delay_ms = self._typing_delay(text)

        # start -> wait -> stop, stop even when cancelled mid-wait.
        # Every delivery stops the indicator before its own message goes out.
        switched_on = self.ctx.typing_begin(conversation_id, iid)
        try:
            if switched_on:
                await self._publish_typing(TypingEvent(iid, conversation_id, True))
            if delay_ms > 0:
                await asyncio.sleep(delay_ms / 1000.0)
        finally:
            self.ctx.typing_end(conversation_id, iid)
            await self._publish_typing(TypingEvent(iid, conversation_id, False))

        sent = await self._store_and_publish(identity, conversation_id, receiver_id, text, kind)

        # other replies of this identity are still being composed here
        if iid in self.ctx.typing_identities(conversation_id):
            await self._publish_typing(TypingEvent(iid, conversation_id, True))
        return sent

    async def _store_and_publish(
        self,
        identity: ScriptedIdentity,
        conversation_id: str,
        receiver_id: str,
        text: str,
        kind: DeliveryKind,
    ) -> bool:
        async with self.ctx.lock_for(conversation_id):
            if self.ctx.memory.get(conversation_id) is None:
                logger.warning("conversation %s was cleared; dropping %s", conversation_id, kind.value)
                return False
            if identity.identity_id not in self.ctx.active:
                logger.warning("identity %s no longer active; dropping %s", identity.identity_id, kind.value)
                return False

            draft = MessageDraft(
                sender_id=identity.identity_id,
                receiver_id=receiver_id,
                conversation_id=conversation_id,
                text=text,
                ts=self._now(),
                is_scripted=True,
            )
            try:
                stored = await self.message_store.save(draft)
            except Exception:
                logger.exception("storing %s for %s failed", kind.value, conversation_id)
                return False

            try:
                self.ctx.memory.append(conversation_id, SpeakerRole.SCRIPT, text, ts=stored.ts)
            except MissingMemoryError:
                logger.warning("conversation %s cleared while storing %s; not publishing", conversation_id, kind.value)
                return False

            payload = MessageDeliveryPayload.from_stored(stored, sender_name=identity.display_name, is_scripted=True)
            try:
                await self.transport.publish(conversation_id, EventName.RECEIVE_MESSAGE.value, to_wire(payload))
            except Exception:
                logger.exception("publishing %s for %s failed", kind.value, conversation_id)
                return False

        logger.info("%s sent: %s -> %s", kind.value, identity.display_name, conversation_id)
        self._dbg(f"{kind.value} conv={conversation_id} id={stored.message_id} preview={text[:60]!r}")
        return True

    async def _publish_typing(self, event: TypingEvent) -> None:
        try:
            await self.transport.publish(
                event.conversation_id,
                EventName.USER_TYPING.value,
                to_wire(TypingPayload.from_event(event)),
            )
        except Exception:
            logger.exception("typing indicator publish failed for %s", event.conversation_id)

    def _typing_delay(self, text: str) -> int:
        try:
            return max(0, int(self.responder.typing_delay(len(text))))
        except Exception:
            logger.exception("typing delay computation failed; sending without delay")
            return 0

    def _now(self) -> datetime:
        return self.clock.now() if self.clock else utc_now()

    def _dbg(self, msg: str) -> None:
        if self.debug:
            self.debug_print(f"[session] {msg}")


def _receiver_of(message: Inbound) -> Optional[str]:
    if isinstance(message, IncomingMessage):
        return message.receiver_id
    if isinstance(message, Mapping):
        value = message.get("receiver_id", message.get("receiverId"))
        return value if isinstance(value, str) else None
    return None
