"""
Shared fixtures: an engine over the in-memory store and directory.
"""

from typing import Optional
from uuid import UUID

import pytest

from config.schema import ReconciliationConfig
from agent_access.data.models.access import AgentType, Assignment, OrganizationUser, UserStatus
from agent_access.data.repos.access import AccessRepository
from agent_access.directory.memory import InMemoryDirectory
from agent_access.engine import ReconciliationEngine

ORG = UUID("a3b4c5d6-e7f8-4a9b-8c7d-6e5f4a3b2c1d")
OTHER_ORG = UUID("b1c2d3e4-f5a6-4b7c-8d9e-0f1a2b3c4d5e")


class AccessFixture:
    """Seeds agent types, users and assignment rows straight into the store."""

    def __init__(self, engine: ReconciliationEngine, directory: InMemoryDirectory):
        self.engine = engine
        self.directory = directory
        self.repository = engine.repository
        self.org = ORG
        self.other_org = OTHER_ORG

    async def agent_type(self, name: str, group_id: Optional[str] = None, **kwargs) -> AgentType:
        return await self.engine.registry.create(
            AgentType(name=name, display_name=name.title(), group_id=group_id, **kwargs)
        )

    async def user(
        self,
        user_id: str,
        organization_id: UUID = ORG,
        status: UserStatus = UserStatus.ACTIVE,
    ) -> OrganizationUser:
        return await self.repository.users.create(
            OrganizationUser(
                organization_id=organization_id,
                directory_user_id=user_id,
                email=f"{user_id}@example.com",
                status=status,
            )
        )

    async def row(
        self,
        user_id: str,
        agent_type: AgentType,
        organization_id: UUID = ORG,
        group_id: Optional[str] = None,
        is_active: bool = True,
    ) -> Assignment:
        row = Assignment.create(
            user_id=user_id,
            agent_type_id=agent_type.id,
            organization_id=organization_id,
            group_id=agent_type.group_id if group_id is None else group_id,
            assigned_by="seed",
        )
        row.is_active = is_active
        return await self.repository.assignments.save(row)

    async def rows(self, user_id: str, organization_id: UUID = ORG) -> dict:
        """All rows for a user keyed by agent type id (latest wins)."""
        rows = await self.repository.assignments.list_for_user(user_id, organization_id, active=None)
        return {r.agent_type_id: r for r in rows}


@pytest.fixture
def directory():
    return InMemoryDirectory({
        "g-sales": set(),
        "g-support": set(),
        "g-sales-2": set(),
    })


@pytest.fixture
def policy():
    return ReconciliationConfig()


@pytest.fixture
def engine(directory, policy):
    return ReconciliationEngine(AccessRepository(), directory, policy=policy)


@pytest.fixture
def env(engine, directory):
    return AccessFixture(engine, directory)
