"""
Guarded directory

Wraps any DirectoryClient so every call has a bounded timeout and a
failure never propagates into the reconciliation loop: lookups degrade to
TransientError and mutations to False.
"""

import asyncio
import logging
from typing import FrozenSet

from ..core.results import Lookup
from .base import DirectoryClient

logger = logging.getLogger(__name__)


class GuardedDirectory(DirectoryClient):
    """Timeout and exception boundary around a directory client."""

    def __init__(self, inner: DirectoryClient, timeout: float = 60.0):
        self.inner = inner
        self.timeout = timeout
        self.mutation_count = 0

    async def lookup_group(self, group_id: str) -> Lookup[str]:
        try:
            return await asyncio.wait_for(self.inner.lookup_group(group_id), self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Timed out looking up group {group_id}")
            return Lookup.transient(f"Timed out looking up group {group_id}")
        except Exception as e:
            logger.exception(f"Unexpected error looking up group {group_id}")
            return Lookup.transient(str(e))

    async def fetch_memberships(self, user_id: str) -> Lookup[FrozenSet[str]]:
        try:
            return await asyncio.wait_for(self.inner.fetch_memberships(user_id), self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Timed out listing memberships for {user_id}")
            return Lookup.transient(f"Timed out listing memberships for {user_id}")
        except Exception as e:
            logger.exception(f"Unexpected error listing memberships for {user_id}")
            return Lookup.transient(str(e))

    async def add_membership(self, user_id: str, group_id: str) -> bool:
        self.mutation_count += 1
        try:
            return await asyncio.wait_for(self.inner.add_membership(user_id, group_id), self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Timed out adding {user_id} to group {group_id}")
            return False
        except Exception:
            logger.exception(f"Unexpected error adding {user_id} to group {group_id}")
            return False

    async def remove_membership(self, user_id: str, group_id: str) -> bool:
        self.mutation_count += 1
        try:
            return await asyncio.wait_for(self.inner.remove_membership(user_id, group_id), self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Timed out removing {user_id} from group {group_id}")
            return False
        except Exception:
            logger.exception(f"Unexpected error removing {user_id} from group {group_id}")
            return False

    async def close(self) -> None:
        await self.inner.close()
