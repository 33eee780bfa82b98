"""Per-user conversation state and per-user serialization."""

from __future__ import annotations

import asyncio
import copy
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Protocol

from models import Session


class SessionStore(Protocol):
    async def get(self, user_id: str) -> Session:
        """Return the user's session, or a fresh empty one. Never fails."""

    async def set(self, user_id: str, session: Session) -> None:
        ...

    async def clear(self, user_id: str) -> None:
        ...


class InMemorySessionStore:
    """Process-lifetime store. ``get`` hands out copies; publish with ``set``."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}

    async def get(self, user_id: str) -> Session:
        session = self._sessions.get(user_id)
        if session is None:
            return Session()
        return copy.deepcopy(session)

    async def set(self, user_id: str, session: Session) -> None:
        self._sessions[user_id] = copy.deepcopy(session)

    async def clear(self, user_id: str) -> None:
        self._sessions[user_id] = Session()

    def __len__(self) -> int:
        return len(self._sessions)


class UserLocks:
    """One FIFO ``asyncio.Lock`` per user id, dropped once nobody needs it."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        self._users[user_id] = self._users.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[user_id] -= 1
            if self._users[user_id] == 0:
                del self._users[user_id]
                del self._locks[user_id]

    def active(self) -> int:
        return len(self._locks)
