# companions/Services/session_context.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Dict, Optional, Set, Tuple, TypeVar

from Domain.models import ScriptedIdentity
from Services.memory_store import ConversationMemoryStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SessionContext:
    """
    All mutable session state, created once at startup and passed to the
    components that need it (SessionManager, InitiativeScheduler).

    - active: identity id -> working copy of an active scripted identity
    - memory: conversation memories
    - pending deliveries: asyncio tasks keyed by (identity id, conversation id),
      so deactivation / clearing can cancel them deterministically
    - typing: per conversation, how many compositions each identity has in flight
    """
    memory: ConversationMemoryStore = field(default_factory=ConversationMemoryStore)
    active: Dict[str, ScriptedIdentity] = field(default_factory=dict)

    _tasks: Dict[asyncio.Task, Tuple[str, str]] = field(default_factory=dict, init=False, repr=False)
    _locks: Dict[str, asyncio.Lock] = field(default_factory=dict, init=False, repr=False)
    _typing: Dict[str, Dict[str, int]] = field(default_factory=dict, init=False, repr=False)

    # ---------
    # Pending deliveries
    # ---------

    def track(self, identity_id: str, conversation_id: str, coro: Awaitable[T], *, name: Optional[str] = None) -> "asyncio.Task[T]":
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._tasks[task] = (identity_id, conversation_id)
        task.add_done_callback(self._forget)
        return task

    def _forget(self, task: asyncio.Task) -> None:
        self._tasks.pop(task, None)

    def pending(self, *, identity_id: Optional[str] = None, conversation_id: Optional[str] = None) -> int:
        n = 0
        for iid, cid in self._tasks.values():
            if identity_id is not None and iid != identity_id:
                continue
            if conversation_id is not None and cid != conversation_id:
                continue
            n += 1
        return n

    def cancel_identity(self, identity_id: str) -> int:
        return self._cancel(lambda iid, cid: iid == identity_id)

    def cancel_conversation(self, conversation_id: str) -> int:
        return self._cancel(lambda iid, cid: cid == conversation_id)

    def _cancel(self, match) -> int:
        n = 0
        for task, (iid, cid) in list(self._tasks.items()):
            if match(iid, cid) and not task.done():
                task.cancel()
                n += 1
        if n:
            logger.debug("cancelled %d pending deliveries", n)
        return n

    async def close(self) -> None:
        """Cancel every pending delivery and wait for them to unwind."""
        tasks = [t for t in self._tasks if not t.done()]
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    # ---------
    # Per-conversation serialization
    # ---------

    def lock_for(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    def forget_conversation(self, conversation_id: str) -> None:
        lock = self._locks.get(conversation_id)
        if lock is not None and not lock.locked():
            del self._locks[conversation_id]
        # typing counts unwind through typing_end() in the cancelled deliveries

    # ---------
    # Typing bookkeeping
    # ---------

    def typing_begin(self, conversation_id: str, identity_id: str) -> bool:
        """Register one composition; True when the indicator should be switched on."""
        per_conv = self._typing.setdefault(conversation_id, {})
        per_conv[identity_id] = per_conv.get(identity_id, 0) + 1
        return per_conv[identity_id] == 1

    def typing_end(self, conversation_id: str, identity_id: str) -> bool:
        """Unregister one composition; True when the indicator should be switched off."""
        per_conv = self._typing.get(conversation_id)
        if not per_conv or identity_id not in per_conv:
            return False
        per_conv[identity_id] -= 1
        if per_conv[identity_id] > 0:
            return False
        del per_conv[identity_id]
        if not per_conv:
            del self._typing[conversation_id]
        return True

    def typing_identities(self, conversation_id: str) -> Set[str]:
        return set(self._typing.get(conversation_id, {}))
