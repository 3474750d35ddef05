"""
Directory Client contract

Everything the reconciliation engine needs from the external directory.
Implementations must make add/remove idempotent and must report a missing
group as NotFound rather than raising.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import FrozenSet, Set

from ..core.errors import DirectoryError
from ..core.results import Lookup


class DirectoryClient(ABC):
    """
    Abstract directory client.

    Subclasses implement the four primitives; `group_exists` and
    `list_memberships` are conveniences built on them.
    """

    @abstractmethod
    async def lookup_group(self, group_id: str) -> Lookup[str]:
        """Resolve a group. Found(group_id) | NotFound | TransientError."""

    @abstractmethod
    async def fetch_memberships(self, user_id: str) -> Lookup[FrozenSet[str]]:
        """Snapshot of the group ids a user is a direct member of."""

    @abstractmethod
    async def add_membership(self, user_id: str, group_id: str) -> bool:
        """Make the user a member. True if the user is a member afterwards."""

    @abstractmethod
    async def remove_membership(self, user_id: str, group_id: str) -> bool:
        """Remove the user. True if the user is not a member afterwards."""

    async def group_exists(self, group_id: str) -> bool:
        """False for a missing group; never raises for not-found."""
        return (await self.lookup_group(group_id)).is_found

    async def list_memberships(self, user_id: str) -> Set[str]:
        lookup = await self.fetch_memberships(user_id)
        if lookup.is_found:
            return set(lookup.value)
        if lookup.is_not_found:
            return set()
        raise DirectoryError(lookup.reason or f"Could not list memberships for {user_id}")

    async def close(self) -> None:
        """Release network resources."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
