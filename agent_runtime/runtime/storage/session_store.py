"""
Durable session storage.

Sessions are append-only: a store accepts new messages at the tail and never
rewrites earlier ones, so a load after a turn always extends what was loaded
before it.
"""
from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
from dataclasses import asdict
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Set

import aiofiles

from agent_runtime.errors import SessionConflict, SessionNotFound
from agent_runtime.runtime.messages import Message
from agent_runtime.runtime.session import Session, SessionStats
from agent_runtime.runtime.storage.paths import sessions_dir

logger = logging.getLogger("agent_runtime.store")


class SessionStore(Protocol):
    async def create(self, session: Session) -> Session:
        ...

    async def exists(self, session_id: str) -> bool:
        ...

    async def load(self, session_id: str) -> Session:
        ...

    async def snapshot(self, session_id: str) -> Session:
        ...

    async def append(self, session_id: str, message: Message, expected_count: Optional[int] = None) -> None:
        ...

    async def save_stats(self, session_id: str, stats: SessionStats) -> None:
        ...

    async def list_sessions(self) -> List[str]:
        ...


class _Locks:
    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def __call__(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock


def _check_append(session_id: str, count: int, ids: Set[str], message: Message, expected_count: Optional[int]) -> None:
    if expected_count is not None and expected_count != count:
        raise SessionConflict(f"Session {session_id} has {count} messages, expected {expected_count}")
    if message.id in ids:
        raise SessionConflict(f"Message {message.id} already stored in session {session_id}")


class InMemorySessionStore:
    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._lock = _Locks()

    async def create(self, session: Session) -> Session:
        async with self._lock(session.id):
            if session.id in self._sessions:
                raise SessionConflict(f"Session already exists: {session.id}")
            self._sessions[session.id] = copy.deepcopy(session)
        return session

    async def exists(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def load(self, session_id: str) -> Session:
        async with self._lock(session_id):
            return self._copy(session_id)

    async def snapshot(self, session_id: str) -> Session:
        return self._copy(session_id)

    def _copy(self, session_id: str) -> Session:
        s = self._sessions.get(session_id)
        if s is None:
            raise SessionNotFound(session_id)
        return copy.deepcopy(s)

    async def append(self, session_id: str, message: Message, expected_count: Optional[int] = None) -> None:
        async with self._lock(session_id):
            s = self._sessions.get(session_id)
            if s is None:
                raise SessionNotFound(session_id)
            _check_append(session_id, len(s.messages), {m.id for m in s.messages}, message, expected_count)
            s.add_message(message)

    async def save_stats(self, session_id: str, stats: SessionStats) -> None:
        async with self._lock(session_id):
            s = self._sessions.get(session_id)
            if s is None:
                raise SessionNotFound(session_id)
            s.stats.iteration_count = stats.iteration_count

    async def list_sessions(self) -> List[str]:
        return list(self._sessions)


class JsonlSessionStore:
    """
    One ``<id>.jsonl`` file per session: a header line, then one line per
    appended message, plus occasional stats lines (the last one wins).
    """

    def __init__(self, data_dir: Optional[str] = None):
        self.data_dir = sessions_dir(data_dir)
        self._lock = _Locks()
        # session_id -> (message count, message ids); filled on first touch
        self._index: Dict[str, tuple] = {}

    def _path(self, session_id: str) -> Path:
        safe_id = session_id.replace("/", "-").replace("\\", "-")
        return self.data_dir / f"{safe_id}.jsonl"

    async def _ends_cleanly(self, path: Path) -> bool:
        if not path.exists():
            return True
        async with aiofiles.open(path, "rb") as f:
            size = await f.seek(0, os.SEEK_END)
            if size == 0:
                return True
            await f.seek(size - 1)
            return await f.read(1) == b"\n"

    async def _write_line(self, path: Path, record: dict, mode: str = "a") -> None:
        line = json.dumps(record, ensure_ascii=False) + "\n"
        if mode == "a" and not await self._ends_cleanly(path):
            # close off a torn tail so this record starts on its own line
            line = "\n" + line
        async with aiofiles.open(path, mode, encoding="utf-8") as f:
            await f.write(line)

    async def create(self, session: Session) -> Session:
        async with self._lock(session.id):
            path = self._path(session.id)
            if path.exists():
                raise SessionConflict(f"Session already exists: {session.id}")
            await self._write_line(path, {"kind": "header", **session.header()}, mode="w")
            for m in session.messages:
                await self._write_line(path, {"kind": "message", "message": m.to_dict()})
            self._index[session.id] = (len(session.messages), {m.id for m in session.messages})
        logger.debug("session created: %s", session.id)
        return session

    async def exists(self, session_id: str) -> bool:
        return self._path(session_id).exists()

    async def _read(self, session_id: str) -> Session:
        path = self._path(session_id)
        if not path.exists():
            raise SessionNotFound(session_id)

        session: Optional[Session] = None
        stats: Optional[dict] = None
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            async for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    rec = json.loads(line)
                except json.JSONDecodeError as e:
                    # A torn final line after a crash; earlier lines are intact.
                    logger.warning("skipping unreadable line in %s: %s", path.name, e)
                    continue
                kind = rec.get("kind")
                if kind == "header":
                    session = Session.from_dict(rec)
                elif kind == "message" and session is not None:
                    session.add_message(Message.from_dict(rec["message"]))
                elif kind == "stats":
                    stats = rec
        if session is None:
            raise SessionNotFound(session_id)
        if stats is not None:
            session.stats.iteration_count = int(stats.get("iteration_count", 0) or 0)
        self._index[session_id] = (len(session.messages), {m.id for m in session.messages})
        return session

    async def load(self, session_id: str) -> Session:
        async with self._lock(session_id):
            return await self._read(session_id)

    async def snapshot(self, session_id: str) -> Session:
        return await self._read(session_id)

    async def append(self, session_id: str, message: Message, expected_count: Optional[int] = None) -> None:
        async with self._lock(session_id):
            if session_id not in self._index:
                await self._read(session_id)
            count, ids = self._index[session_id]
            _check_append(session_id, count, ids, message, expected_count)
            await self._write_line(self._path(session_id), {"kind": "message", "message": message.to_dict()})
            ids.add(message.id)
            self._index[session_id] = (count + 1, ids)

    async def save_stats(self, session_id: str, stats: SessionStats) -> None:
        async with self._lock(session_id):
            path = self._path(session_id)
            if not path.exists():
                raise SessionNotFound(session_id)
            await self._write_line(path, {"kind": "stats", **asdict(stats)})

    async def list_sessions(self) -> List[str]:
        return sorted(p.stem for p in self.data_dir.glob("*.jsonl"))
