# app/settings.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from Domain.utils import safe_int
from Services.initiative_scheduler import SchedulerConfig
from Services.responder import TypingDelayConfig
from Services.session_manager import SessionConfig


@dataclass(frozen=True)
class Settings:
    session: SessionConfig = field(default_factory=SessionConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    typing: TypingDelayConfig = field(default_factory=TypingDelayConfig)
    max_history: Optional[int] = None
    messages_path: str = "data/messages.jsonl"
    log_level: str = "INFO"
    seed: Optional[int] = None


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return safe_int(raw, default)


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """
    Build Settings from the environment (after loading .env if present).

      COMPANION_CONTEXT_MESSAGES        responder context window (10)
      COMPANION_MAX_HISTORY             stored entries per conversation (unbounded)
      COMPANION_IDLE_THRESHOLD_SECONDS  idle time before an initiative (7200)
      COMPANION_SWEEP_INTERVAL_SECONDS  full sweep period (1800)
      COMPANION_RECHECK_INTERVAL_SECONDS  re-check period, 0 disables (300)
      COMPANION_TYPING_CEILING_MS       max simulated typing delay (5000)
      COMPANION_MESSAGES_PATH           JSONL message log
      COMPANION_LOG_LEVEL               logging level name
      COMPANION_SEED                    fixed seed for the responder
    """
    load_dotenv(env_file)

    session_defaults = SessionConfig()
    scheduler_defaults = SchedulerConfig()
    typing_defaults = TypingDelayConfig()

    ceiling = _env_int("COMPANION_TYPING_CEILING_MS", typing_defaults.ceiling_ms)
    floor = min(typing_defaults.floor_ms, ceiling)

    return Settings(
        session=SessionConfig(
            context_messages=_env_int("COMPANION_CONTEXT_MESSAGES", session_defaults.context_messages),
            idle_threshold_seconds=_env_int("COMPANION_IDLE_THRESHOLD_SECONDS", session_defaults.idle_threshold_seconds),
        ),
        scheduler=SchedulerConfig(
            sweep_interval_seconds=_env_int("COMPANION_SWEEP_INTERVAL_SECONDS", int(scheduler_defaults.sweep_interval_seconds)),
            recheck_interval_seconds=_env_int("COMPANION_RECHECK_INTERVAL_SECONDS", int(scheduler_defaults.recheck_interval_seconds)),
        ),
        typing=TypingDelayConfig(floor_ms=floor, ceiling_ms=ceiling),
        max_history=_env_int("COMPANION_MAX_HISTORY", None),
        messages_path=os.getenv("COMPANION_MESSAGES_PATH", "data/messages.jsonl"),
        log_level=os.getenv("COMPANION_LOG_LEVEL", "INFO").upper(),
        seed=_env_int("COMPANION_SEED", None),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s :: %(message)s",
    )
