# companions/Infra/jsonl_message_store.py
from __future__ import annotations

import asyncio
import json
import os
import threading
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional

from Domain.models import MessageDraft, StoredMessage


@dataclass
class JSONLMessageStore:
    """
    Append-only message store using JSON Lines (one stored message per line).

    Each line is StoredMessage.to_dict():
      {"id": "...", "sender": "...", "receiver": "...", "conversation_id": "...",
       "text": "...", "message_type": "text", "ts": "...", "is_scripted": false, "is_read": false}

    Read receipts are appended as {"read": conversation_id, "reader": ..., "ids": [...]}
    lines; iter_messages() folds them back in. Bad lines are skipped.

    The file is parsed once, on first use; afterwards the in-memory copy is kept
    in step with every write. The async methods run file I/O in a worker thread.
    """

    path: str
    fsync: bool = False
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)
    _messages: Optional[List[StoredMessage]] = field(default=None, init=False, repr=False)
    _index: Dict[str, int] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        p = Path(self.path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.touch(exist_ok=True)

    async def save(self, draft: MessageDraft) -> StoredMessage:
        stored = StoredMessage.from_draft(uuid.uuid4().hex, draft)
        await asyncio.to_thread(self._append_message, stored)
        return stored

    async def mark_read(self, conversation_id: str, reader_id: str) -> int:
        return await asyncio.to_thread(self._mark_read, conversation_id, reader_id)

    def history(self, conversation_id: str, limit: Optional[int] = 50) -> List[StoredMessage]:
        """Chronological messages of one conversation, newest `limit` only."""
        with self._lock:
            msgs = [m for m in self._cached() if m.conversation_id == conversation_id]
        if limit is not None and limit >= 0:
            msgs = msgs[-limit:] if limit else []
        return msgs

    def iter_messages(self) -> List[StoredMessage]:
        """Parse the file from scratch."""
        messages: List[StoredMessage] = []
        index: Dict[str, int] = {}
        p = Path(self.path)
        if not p.exists():
            return messages
        with p.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    obj = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if not isinstance(obj, dict):
                    continue
                if "read" in obj:
                    for mid in obj.get("ids") or []:
                        i = index.get(mid)
                        if i is not None:
                            messages[i] = replace(messages[i], is_read=True)
                    continue
                try:
                    msg = StoredMessage.from_dict(obj)
                except (KeyError, TypeError, ValueError):
                    continue
                index[msg.message_id] = len(messages)
                messages.append(msg)
        return messages

    def _cached(self) -> List[StoredMessage]:
        # caller holds self._lock
        if self._messages is None:
            self._messages = self.iter_messages()
            self._index = {m.message_id: i for i, m in enumerate(self._messages)}
        return self._messages

    def _append_message(self, stored: StoredMessage) -> None:
        with self._lock:
            messages = self._cached()
            self._write_line(stored.to_dict())
            self._index[stored.message_id] = len(messages)
            messages.append(stored)

    def _mark_read(self, conversation_id: str, reader_id: str) -> int:
        with self._lock:
            messages = self._cached()
            ids = [
                m.message_id
                for m in messages
                if m.conversation_id == conversation_id and m.receiver_id == reader_id and not m.is_read
            ]
            if not ids:
                return 0
            self._write_line({"read": conversation_id, "reader": reader_id, "ids": ids})
            for mid in ids:
                i = self._index[mid]
                messages[i] = replace(messages[i], is_read=True)
            return len(ids)

    def _write_line(self, obj: dict) -> None:
        line = json.dumps(obj, ensure_ascii=False) + "\n"
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                if self.fsync:
                    os.fsync(f.fileno())
