# companions/Services/chat_gateway.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Set, Union

from pydantic import ValidationError

from Domain.constants import EventName
from Domain.models import MessageDraft, StoredMessage, TypingEvent
from Domain.schemas import IncomingMessage, MessageDeliveryPayload, ReadReceiptPayload, TypingPayload, to_wire
from Domain.utils import utc_now
from Services.ports import IClock, IMatchStore, IMessageStore, ITransport
from Services.session_manager import SessionManager

logger = logging.getLogger(__name__)


class ChatGateway:
    """
    Chat-room side of the transport: what a socket handler calls for human clients.

    - handle_message: persist + broadcast the human message, then hand it to the
      SessionManager in the background (scripted receivers reply later)
    - handle_typing: track who is typing per conversation and broadcast it
    - handle_read: mark messages read and broadcast a read receipt
    """

    def __init__(
        self,
        *,
        manager: SessionManager,
        message_store: IMessageStore,
        match_store: IMatchStore,
        transport: ITransport,
        clock: Optional[IClock] = None,
        validate_match: bool = True,
    ):
        self.manager = manager
        self.message_store = message_store
        self.match_store = match_store
        self.transport = transport
        self.clock = clock
        self.validate_match = validate_match

        self._typing_users: Dict[str, Set[str]] = {}

    async def handle_message(self, data: Union[IncomingMessage, Mapping[str, Any]]) -> Optional[StoredMessage]:
        try:
            msg = data if isinstance(data, IncomingMessage) else IncomingMessage.model_validate(data)
        except ValidationError as e:
            logger.warning("dropping malformed chat message: %s", e)
            return None

        if self.validate_match:
            try:
                ok = await self.match_store.is_active_between(msg.conversation_id, msg.sender_id, msg.receiver_id)
            except Exception:
                logger.exception("match lookup failed for %s", msg.conversation_id)
                return None
            if not ok:
                logger.warning("no active match %s between %s and %s", msg.conversation_id, msg.sender_id, msg.receiver_id)
                return None

        draft = MessageDraft(
            sender_id=msg.sender_id,
            receiver_id=msg.receiver_id,
            conversation_id=msg.conversation_id,
            text=msg.text,
            ts=self._now(),
            message_type=msg.message_type,
        )
        try:
            stored = await self.message_store.save(draft)
        except Exception:
            logger.exception("storing chat message for %s failed", msg.conversation_id)
            return None

        try:
            await self.transport.publish(
                msg.conversation_id,
                EventName.RECEIVE_MESSAGE.value,
                to_wire(MessageDeliveryPayload.from_stored(stored)),
            )
        except Exception:
            logger.exception("broadcasting chat message for %s failed", msg.conversation_id)

        self._set_typing(msg.conversation_id, msg.sender_id, False)
        self.manager.submit(msg)
        return stored

    async def handle_typing(self, conversation_id: str, user_id: str, is_typing: bool) -> None:
        self._set_typing(conversation_id, user_id, is_typing)
        payload = TypingPayload.from_event(TypingEvent(user_id, conversation_id, bool(is_typing)))
        try:
            await self.transport.publish(conversation_id, EventName.USER_TYPING.value, to_wire(payload))
        except Exception:
            logger.exception("typing broadcast failed for %s", conversation_id)

    async def handle_read(self, conversation_id: str, reader_id: str) -> int:
        try:
            count = await self.message_store.mark_read(conversation_id, reader_id)
        except Exception:
            logger.exception("marking messages read failed for %s", conversation_id)
            return 0

        payload = ReadReceiptPayload(conversation_id=conversation_id, reader_id=reader_id, count=count)
        try:
            await self.transport.publish(conversation_id, EventName.MESSAGES_READ.value, to_wire(payload))
        except Exception:
            logger.exception("read receipt broadcast failed for %s", conversation_id)
        return count

    def typing_users(self, conversation_id: str) -> Set[str]:
        """Humans currently typing plus scripted identities composing a reply."""
        humans = set(self._typing_users.get(conversation_id, ()))
        return humans | self.manager.ctx.typing_identities(conversation_id)

    def _set_typing(self, conversation_id: str, user_id: str, is_typing: bool) -> None:
        if is_typing:
            self._typing_users.setdefault(conversation_id, set()).add(user_id)
            return
        users = self._typing_users.get(conversation_id)
        if users is None:
            return
        users.discard(user_id)
        if not users:
            del self._typing_users[conversation_id]

    def _now(self) -> datetime:
        return self.clock.now() if self.clock else utc_now()
