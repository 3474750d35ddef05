"""
In-memory directory

A directory held in process memory. Used for local dry runs and tests;
supports failure injection so partial-failure paths can be exercised.
"""

import logging
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from ..core.results import Lookup
from .base import DirectoryClient

logger = logging.getLogger(__name__)


class InMemoryDirectory(DirectoryClient):
    """
    Directory backed by a dict of group id -> member ids.

    Failure injection:
        fail_adds / fail_removes: (user_id, group_id) pairs whose mutation
            returns False
        unavailable_groups: group ids whose lookup reports a transient error
        unavailable_users: user ids whose membership listing is transient
    """

    def __init__(self, groups: Optional[Dict[str, Set[str]]] = None):
        self.groups: Dict[str, Set[str]] = {
            gid: set(members) for gid, members in (groups or {}).items()
        }
        self.fail_adds: Set[Tuple[str, str]] = set()
        self.fail_removes: Set[Tuple[str, str]] = set()
        self.unavailable_groups: Set[str] = set()
        self.unavailable_users: Set[str] = set()

        # (operation, user_id, group_id) for every mutation attempted
        self.calls: List[Tuple[str, str, str]] = []

    # Setup helpers

    def create_group(self, group_id: str, members: Optional[Set[str]] = None) -> None:
        self.groups[group_id] = set(members or ())

    def delete_group(self, group_id: str) -> None:
        self.groups.pop(group_id, None)

    def members(self, group_id: str) -> Set[str]:
        return set(self.groups.get(group_id, ()))

    def is_member(self, user_id: str, group_id: str) -> bool:
        return user_id in self.groups.get(group_id, ())

    def mutations(self, operation: Optional[str] = None) -> List[Tuple[str, str, str]]:
        if operation is None:
            return list(self.calls)
        return [c for c in self.calls if c[0] == operation]

    # DirectoryClient

    async def lookup_group(self, group_id: str) -> Lookup[str]:
        if group_id in self.unavailable_groups:
            return Lookup.transient(f"Group {group_id} temporarily unavailable")
        if group_id in self.groups:
            return Lookup.found(group_id)
        return Lookup.not_found(f"Group {group_id} does not exist")

    async def fetch_memberships(self, user_id: str) -> Lookup[FrozenSet[str]]:
        if user_id in self.unavailable_users:
            return Lookup.transient(f"Memberships for {user_id} temporarily unavailable")
        return Lookup.found(frozenset(
            gid for gid, members in self.groups.items() if user_id in members
        ))

    async def add_membership(self, user_id: str, group_id: str) -> bool:
        self.calls.append(("add", user_id, group_id))
        if (user_id, group_id) in self.fail_adds or group_id in self.unavailable_groups:
            logger.debug(f"Injected add failure for {user_id} -> {group_id}")
            return False
        if group_id not in self.groups:
            return False
        self.groups[group_id].add(user_id)
        return True

    async def remove_membership(self, user_id: str, group_id: str) -> bool:
        self.calls.append(("remove", user_id, group_id))
        if (user_id, group_id) in self.fail_removes or group_id in self.unavailable_groups:
            logger.debug(f"Injected remove failure for {user_id} -> {group_id}")
            return False
        self.groups.get(group_id, set()).discard(user_id)
        return True
