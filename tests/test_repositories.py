"""
Tests for the access repositories (in-memory and Supabase paths)
"""

from datetime import timedelta
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from agent_access.data.models.access import AgentType, Assignment, OrganizationUser, UserStatus
from agent_access.data.repos.access import (
    AccessRepository,
    AssignmentRepository,
    latest_by_agent_type,
)

ORG = uuid4()


def make_row(agent_type_id=None, is_active=True, **kwargs) -> Assignment:
    row = Assignment.create("u1", agent_type_id or uuid4(), ORG, "g-1")
    row.is_active = is_active
    for key, value in kwargs.items():
        setattr(row, key, value)
    return row


class TestInMemoryRepositories:

    def setup_method(self):
        self.repo = AccessRepository()

    @pytest.mark.asyncio
    async def test_store_holds_copies(self):
        row = make_row()
        await self.repo.assignments.save(row)

        row.is_active = False
        stored = await self.repo.assignments.get(row.id)
        assert stored.is_active

        stored.group_id = "changed"
        assert (await self.repo.assignments.get(row.id)).group_id == "g-1"

    @pytest.mark.asyncio
    async def test_save_many_replaces_by_id(self):
        first, second = make_row(), make_row()
        await self.repo.assignments.save_many([first, second])
        first.deactivate()
        await self.repo.assignments.save_many([first])

        rows = await self.repo.assignments.list_for_user("u1", ORG, active=None)
        assert len(rows) == 2
        assert [r.is_active for r in await self.repo.assignments.list_for_user("u1", ORG)] == [True]

    @pytest.mark.asyncio
    async def test_find_prefers_active_row(self):
        agent_type_id = uuid4()
        old = make_row(agent_type_id, is_active=False)
        current = make_row(agent_type_id)
        await self.repo.assignments.save_many([current, old])

        found = await self.repo.assignments.find("u1", agent_type_id, ORG)
        assert found.id == current.id

    @pytest.mark.asyncio
    async def test_organizations_for_agent_type(self):
        agent_type_id = uuid4()
        other_org = uuid4()
        await self.repo.assignments.save_many([
            make_row(agent_type_id),
            make_row(agent_type_id, organization_id=other_org),
            make_row(agent_type_id, organization_id=uuid4(), is_active=False),
        ])

        orgs = await self.repo.assignments.organizations_for_agent_type(agent_type_id)
        assert set(orgs) == {ORG, other_org}

    @pytest.mark.asyncio
    async def test_users_by_directory_id_and_status(self):
        active = OrganizationUser(organization_id=ORG, directory_user_id="u1", email="u1@example.com")
        suspended = OrganizationUser(
            organization_id=ORG, directory_user_id="u2", email="u2@example.com",
            status=UserStatus.SUSPENDED,
        )
        await self.repo.users.create(active)
        await self.repo.users.create(suspended)

        assert (await self.repo.users.get_by_directory_id("u2", ORG)).id == suspended.id
        assert await self.repo.users.get_by_directory_id("u2", uuid4()) is None
        assert [u.directory_user_id for u in await self.repo.users.list_active_by_organization(ORG)] == ["u1"]

    @pytest.mark.asyncio
    async def test_agent_type_by_name(self):
        sales = await self.repo.agent_types.create(AgentType(name="sales"))
        assert (await self.repo.agent_types.get_by_name("sales")).id == sales.id
        assert await self.repo.agent_types.get_by_name("missing") is None


class TestLatestByAgentType:

    def test_active_row_wins_over_newer_inactive(self):
        agent_type_id = uuid4()
        active = make_row(agent_type_id)
        newer = make_row(agent_type_id, is_active=False, modified_at=active.modified_at + timedelta(hours=1))

        assert latest_by_agent_type([newer, active])[agent_type_id].id == active.id

    def test_latest_inactive_row_wins(self):
        agent_type_id = uuid4()
        older = make_row(agent_type_id, is_active=False)
        newer = make_row(agent_type_id, is_active=False, modified_at=older.modified_at + timedelta(hours=1))

        assert latest_by_agent_type([older, newer])[agent_type_id].id == newer.id


class TestSupabaseAssignmentRepository:
    """Supabase calls are made through the client's query builder"""

    def setup_method(self):
        self.client = MagicMock()
        self.table = self.client.table.return_value
        self.repo = AssignmentRepository(self.client)

    @pytest.mark.asyncio
    async def test_save_many_is_one_upsert(self):
        rows = [make_row(), make_row()]
        self.table.upsert.return_value.execute.return_value.data = [
            r.model_dump(mode="json") for r in rows
        ]

        saved = await self.repo.save_many(rows)

        self.client.table.assert_called_once_with("agent_type_group_assignments")
        self.table.upsert.assert_called_once()
        payload = self.table.upsert.call_args.args[0]
        assert [p["id"] for p in payload] == [str(r.id) for r in rows]
        assert self.table.upsert.call_args.kwargs == {"on_conflict": "id"}
        assert [s.id for s in saved] == [r.id for r in rows]

    @pytest.mark.asyncio
    async def test_save_many_empty_skips_request(self):
        assert await self.repo.save_many([]) == []
        self.client.table.assert_not_called()

    @pytest.mark.asyncio
    async def test_list_for_user_filters(self):
        query = self.table.select.return_value
        query.eq.return_value = query
        query.range.return_value.execute.return_value.data = [make_row().model_dump(mode="json")]

        rows = await self.repo.list_for_user("u1", ORG)

        assert len(rows) == 1
        eq_calls = [c.args for c in query.eq.call_args_list]
        assert ("user_id", "u1") in eq_calls
        assert ("organization_id", str(ORG)) in eq_calls
        assert ("is_active", True) in eq_calls
