"""In-memory session registry.

The registry is the sole owner of encoder process handles: evicting an entry
releases its process. Operations on the same session id are serialized with a
per-key lock; different ids never wait on each other.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from loguru import logger

from .bridge_models import BridgeSession


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class SessionRegistry:
    def __init__(self):
        self._entries: dict[str, BridgeSession] = {}
        self._locks: dict[str, _KeyLock] = {}

    @asynccontextmanager
    async def _locked(self, session_id: str):
        slot = self._locks.get(session_id)
        if slot is None:
            slot = self._locks[session_id] = _KeyLock()
        slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.users -= 1
            if slot.users == 0:
                self._locks.pop(session_id, None)

    @staticmethod
    def _release(entry: BridgeSession) -> None:
        if entry.process is not None and entry.process.is_alive():
            entry.process.terminate()

    async def register(self, session: BridgeSession) -> BridgeSession | None:
        """Store a session, evicting and terminating any previous entry under its id.

        Returns the evicted entry, if any.
        """
        async with self._locked(session.session_id):
            previous = self._entries.get(session.session_id)
            self._entries[session.session_id] = session

        if previous is not None and previous is not session:
            logger.info(
                "Replacing stream for session {} (previous owner {})",
                session.session_id,
                previous.owner_id,
            )
            self._release(previous)
            return previous
        return None

    async def lookup(self, session_id: str) -> BridgeSession | None:
        async with self._locked(session_id):
            return self._entries.get(session_id)

    async def remove(self, session_id: str, expected: BridgeSession | None = None) -> BridgeSession | None:
        """Remove and release the entry for `session_id`. Idempotent.

        With `expected`, only that exact entry is removed; a newer entry that
        replaced it is left alone.
        """
        async with self._locked(session_id):
            entry = self._entries.get(session_id)
            if entry is None or (expected is not None and entry is not expected):
                return None
            del self._entries[session_id]

        logger.debug("Removed session {} from registry", session_id)
        self._release(entry)
        return entry

    def session_ids(self) -> list[str]:
        return list(self._entries)

    async def clear(self) -> list[BridgeSession]:
        """Remove every entry without releasing processes; the caller takes ownership."""
        removed = []
        for session_id in list(self._entries):
            async with self._locked(session_id):
                entry = self._entries.pop(session_id, None)
            if entry is not None:
                removed.append(entry)
        return removed

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._entries
