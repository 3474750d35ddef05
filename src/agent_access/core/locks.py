"""
Per-user reconciliation locks

Serializes reconciliation passes for the same (user, organization) inside
one process, so a bulk revoke and a user update cannot interleave their
ledger writes. Nothing here coordinates across processes.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Tuple
from uuid import UUID


class UserLockRegistry:
    """Hands out one asyncio.Lock per (user, organization) key."""

    def __init__(self):
        self._locks: Dict[Tuple[str, UUID], asyncio.Lock] = {}
        self._holders: Dict[Tuple[str, UUID], int] = {}

    @asynccontextmanager
    async def hold(self, user_id: str, organization_id: UUID) -> AsyncIterator[None]:
        key = (user_id, organization_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
