"""
Access Repository

Handles AgentType, OrganizationUser and Assignment persistence.
The assignment table is the ledger of intended directory grants.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional
from uuid import UUID

from ..models.access import (
    AgentType,
    Assignment,
    OrganizationUser,
    UserStatus,
)
from .base import Repository


class AgentTypeRepository(Repository[AgentType]):
    """Repository for AgentType entities."""

    @property
    def table_name(self) -> str:
        return "agent_types"

    @property
    def model_class(self) -> type[AgentType]:
        return AgentType

    async def get_by_ids(self, ids: Iterable[UUID]) -> list[AgentType]:
        """Fetch several agent types; unknown ids are left out."""
        ids = list(dict.fromkeys(ids))
        if not ids:
            return []
        if self.client:
            response = (
                self.client.table(self.table_name)
                .select("*")
                .in_("id", [str(i) for i in ids])
                .execute()
            )
            return [AgentType(**r) for r in response.data]

        return [
            self._in_memory_store[i].model_copy()
            for i in ids if i in self._in_memory_store
        ]

    async def get_by_name(self, name: str) -> Optional[AgentType]:
        """Find agent type by its unique name."""
        if self.client:
            response = (
                self.client.table(self.table_name)
                .select("*")
                .eq("name", name)
                .limit(1)
                .execute()
            )
            return AgentType(**response.data[0]) if response.data else None

        for agent_type in self._in_memory_store.values():
            if agent_type.name == name:
                return agent_type.model_copy()
        return None

    async def list_active(self, with_group_only: bool = False) -> list[AgentType]:
        """List active agent types in display order."""
        agent_types = await self.list(filters={"is_active": True})
        if with_group_only:
            agent_types = [a for a in agent_types if a.has_group]
        return sorted(agent_types, key=lambda a: (a.display_order, a.name))


class OrganizationUserRepository(Repository[OrganizationUser]):
    """Repository for OrganizationUser entities."""

    @property
    def table_name(self) -> str:
        return "organization_users"

    @property
    def model_class(self) -> type[OrganizationUser]:
        return OrganizationUser

    async def get_by_directory_id(
        self, directory_user_id: str, organization_id: UUID
    ) -> Optional[OrganizationUser]:
        """Find a user by directory object id within an organization."""
        if self.client:
            response = (
                self.client.table(self.table_name)
                .select("*")
                .eq("directory_user_id", directory_user_id)
                .eq("organization_id", str(organization_id))
                .limit(1)
                .execute()
            )
            return OrganizationUser(**response.data[0]) if response.data else None

        for user in self._in_memory_store.values():
            if (
                user.directory_user_id == directory_user_id
                and user.organization_id == organization_id
            ):
                return user.model_copy()
        return None

    async def list_active_by_organization(self, organization_id: UUID) -> list[OrganizationUser]:
        """List users of an organization that are currently active."""
        return await self.list(
            filters={
                "organization_id": organization_id,
                "status": UserStatus.ACTIVE,
            },
            limit=10000,
        )


class AssignmentRepository(Repository[Assignment]):
    """
    Repository for Assignment entities.

    At most one row per (user, agent type, organization) is active. Older
    inactive rows may exist for the same triple; lookups prefer the active
    row and otherwise the most recently modified one.
    """

    @property
    def table_name(self) -> str:
        return "agent_type_group_assignments"

    @property
    def model_class(self) -> type[Assignment]:
        return Assignment

    async def find(
        self, user_id: str, agent_type_id: UUID, organization_id: UUID
    ) -> Optional[Assignment]:
        """Find the row for a (user, agent type, organization) triple."""
        rows = await self.list_for_user(user_id, organization_id, active=None)
        return latest_by_agent_type(rows).get(agent_type_id)

    async def list_for_user(
        self,
        user_id: str,
        organization_id: UUID,
        active: Optional[bool] = True,
    ) -> list[Assignment]:
        """List a user's rows in an organization, oldest first."""
        filters: dict[str, Any] = {
            "user_id": user_id,
            "organization_id": organization_id,
        }
        if active is not None:
            filters["is_active"] = active
        rows = await self.list(filters=filters, limit=10000)
        return sorted(rows, key=lambda a: a.assigned_at)

    async def list_for_agent_type(
        self,
        agent_type_id: UUID,
        organization_id: Optional[UUID] = None,
        active: Optional[bool] = True,
    ) -> list[Assignment]:
        """List rows for an agent type, optionally within one organization."""
        filters: dict[str, Any] = {"agent_type_id": agent_type_id}
        if organization_id is not None:
            filters["organization_id"] = organization_id
        if active is not None:
            filters["is_active"] = active
        rows = await self.list(filters=filters, limit=100000)
        return sorted(rows, key=lambda a: a.assigned_at)

    async def list_active_for_user_agent_type(
        self, user_id: str, agent_type_id: UUID
    ) -> list[Assignment]:
        """Active rows for a user and agent type across all organizations."""
        return await self.list(
            filters={"user_id": user_id, "agent_type_id": agent_type_id, "is_active": True}
        )

    async def organizations_for_agent_type(self, agent_type_id: UUID) -> list[UUID]:
        """Organizations holding at least one active row for an agent type."""
        rows = await self.list_for_agent_type(agent_type_id)
        return list(dict.fromkeys(r.organization_id for r in rows))


class AccessRepository:
    """
    Composite repository for all access entities.

    Provides a single handle for the reconciliation engine.
    """

    def __init__(self, client: Any = None):
        self.client = client
        self.agent_types = AgentTypeRepository(client)
        self.users = OrganizationUserRepository(client)
        self.assignments = AssignmentRepository(client)


def latest_by_agent_type(rows: Iterable[Assignment]) -> dict[UUID, Assignment]:
    """
    Collapse rows to one per agent type.

    An active row always wins; otherwise the most recently modified row.
    """
    chosen: dict[UUID, Assignment] = {}
    for row in rows:
        current = chosen.get(row.agent_type_id)
        if current is None:
            chosen[row.agent_type_id] = row
        elif row.is_active and not current.is_active:
            chosen[row.agent_type_id] = row
        elif row.is_active == current.is_active and row.modified_at > current.modified_at:
            chosen[row.agent_type_id] = row
    return chosen
