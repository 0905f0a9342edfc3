# companions/Services/initiative_scheduler.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from Domain.utils import utc_now
from Services.ports import IClock, IMatchStore
from Services.session_context import SessionContext
from Services.session_manager import SessionManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchedulerConfig:
    """
    - sweep_interval_seconds: full sweep over every conversation of an active identity
    - recheck_interval_seconds: lighter pass over conversations started since the last sweep
      (0 disables it)
    """
    sweep_interval_seconds: float = 30 * 60
    recheck_interval_seconds: float = 5 * 60


class InitiativeScheduler:
    """
    Periodically finds idle conversations that involve an active scripted identity
    and asks the SessionManager to send one initiative message into each.

    The idle threshold lives in SessionConfig; the initiative itself appends to
    memory, which resets the idle clock, so a handled conversation is not picked
    again until it goes idle anew.

    Each conversation is processed in its own task; a failure in one is logged
    and never stops the others or the loop.
    """

    def __init__(
        self,
        *,
        manager: SessionManager,
        context: SessionContext,
        match_store: IMatchStore,
        cfg: Optional[SchedulerConfig] = None,
        clock: Optional[IClock] = None,
    ):
        self.manager = manager
        self.ctx = context
        self.match_store = match_store
        self.cfg = cfg or SchedulerConfig()
        self.clock = clock

        self._loops: List[asyncio.Task] = []
        self._last_sweep_at: Optional[datetime] = None

    # ---------
    # Lifecycle
    # ---------

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._loops)

    def start(self) -> None:
        if self.running:
            return
        self._loops = [
            asyncio.ensure_future(self._every(self.cfg.sweep_interval_seconds, self.sweep, "sweep")),
        ]
        if self.cfg.recheck_interval_seconds > 0:
            self._loops.append(
                asyncio.ensure_future(self._every(self.cfg.recheck_interval_seconds, self.recheck, "recheck"))
            )
        logger.info(
            "initiative scheduler started (sweep every %ss, recheck every %ss)",
            self.cfg.sweep_interval_seconds, self.cfg.recheck_interval_seconds,
        )

    async def stop(self) -> None:
        loops, self._loops = self._loops, []
        for t in loops:
            t.cancel()
        if loops:
            await asyncio.gather(*loops, return_exceptions=True)
        logger.info("initiative scheduler stopped")

    # ---------
    # Sweeps
    # ---------

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """Process every candidate conversation; returns how many initiative messages went out."""
        now = now or self._now()
        candidates = await self._candidates()
        sent = await self._process(candidates, now)
        self._last_sweep_at = now
        logger.info("initiative sweep: %d candidates, %d sent", len(candidates), sent)
        return sent

    async def recheck(self, now: Optional[datetime] = None) -> int:
        """Like sweep(), restricted to conversations that started after the last sweep."""
        now = now or self._now()
        since = self._last_sweep_at
        candidates = await self._candidates()
        if since is not None:
            fresh = []
            for cid in candidates:
                memory = self.ctx.memory.get(cid)
                if memory is not None and memory.started_at > since:
                    fresh.append(cid)
            candidates = fresh
        sent = await self._process(candidates, now)
        if sent:
            logger.info("initiative recheck: %d sent", sent)
        return sent

    # ---------
    # Internals
    # ---------

    async def _candidates(self) -> List[str]:
        identity_ids = list(self.ctx.active)
        if not identity_ids:
            return []
        try:
            conversation_ids = await self.match_store.active_conversations(identity_ids)
        except Exception:
            logger.exception("listing active conversations failed")
            return []
        return [cid for cid in conversation_ids if cid in self.ctx.memory]

    async def _process(self, conversation_ids: List[str], now: datetime) -> int:
        if not conversation_ids:
            return 0
        results = await asyncio.gather(
            *(self.manager.initiate_conversation(cid, now=now) for cid in conversation_ids),
            return_exceptions=True,
        )
        sent = 0
        for cid, result in zip(conversation_ids, results):
            if isinstance(result, asyncio.CancelledError):
                continue
            if isinstance(result, BaseException):
                logger.error("initiative for %s failed: %r", cid, result)
                continue
            if result:
                sent += 1
        return sent

    async def _every(self, period: float, fn: Callable[[], Awaitable[int]], label: str) -> None:
        while True:
            try:
                await asyncio.sleep(period)
                await fn()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("initiative %s failed", label)

    def _now(self) -> datetime:
        return self.clock.now() if self.clock else utc_now()
