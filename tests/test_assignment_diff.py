"""
Tests for single-user diff and apply

Covers the add/remove asymmetry: failed removes still deactivate the row,
grants for a missing group are recorded without a directory call.
"""

import pytest

from config.schema import ReconciliationConfig
from agent_access.core.errors import ValidationError
from agent_access.core.results import ChangeAction, ChangeOutcome


class TestUpdateUserCapabilities:
    """Diff of desired set against active rows"""

    @pytest.mark.asyncio
    async def test_adds_new_capability_and_leaves_existing_untouched(self, env, engine, directory):
        """User holding X who now wants X and Y gets exactly one add for Y"""
        sales = await env.agent_type("sales", "g-sales")
        support = await env.agent_type("support", "g-support")
        existing = await env.row("u1", sales)
        directory.create_group("g-sales", {"u1"})

        result = await engine.update_user_capabilities("u1", env.org, {sales.id, support.id}, "admin")

        assert result.success
        assert result.all_succeeded
        assert directory.mutations() == [("add", "u1", "g-support")]

        rows = await env.rows("u1")
        assert rows[sales.id].id == existing.id
        assert rows[sales.id].modified_at == existing.modified_at
        assert rows[support.id].is_active
        assert rows[support.id].group_id == "g-support"
        assert rows[support.id].assigned_by == "admin"

    @pytest.mark.asyncio
    async def test_removes_everything_even_when_directory_fails(self, env, engine, directory):
        """Both removes are attempted and both rows end inactive"""
        sales = await env.agent_type("sales", "g-sales")
        support = await env.agent_type("support", "g-support")
        await env.row("u1", sales)
        await env.row("u1", support)
        directory.create_group("g-sales", {"u1"})
        directory.create_group("g-support", {"u1"})
        directory.fail_removes.add(("u1", "g-support"))

        result = await engine.update_user_capabilities("u1", env.org, set())

        assert sorted(directory.mutations("remove")) == [
            ("remove", "u1", "g-sales"),
            ("remove", "u1", "g-support"),
        ]
        rows = await env.rows("u1")
        assert not rows[sales.id].is_active
        assert not rows[support.id].is_active

        assert result.success
        assert not result.all_succeeded
        assert [c.group_id for c in result.failed] == ["g-support"]

    @pytest.mark.asyncio
    async def test_every_remove_failing_still_deactivates(self, env, engine, directory):
        sales = await env.agent_type("sales", "g-sales")
        await env.row("u1", sales)
        directory.create_group("g-sales", {"u1"})
        directory.fail_removes.add(("u1", "g-sales"))

        result = await engine.update_user_capabilities("u1", env.org, [])

        assert not result.success
        assert result.changes[0].outcome == ChangeOutcome.FAILED
        rows = await env.rows("u1")
        assert not rows[sales.id].is_active
        assert directory.is_member("u1", "g-sales")

    @pytest.mark.asyncio
    async def test_second_run_makes_no_directory_calls(self, env, engine, directory):
        sales = await env.agent_type("sales", "g-sales")
        support = await env.agent_type("support", "g-support")

        await engine.update_user_capabilities("u1", env.org, {sales.id, support.id})
        first_calls = directory.mutations()
        first_rows = await env.rows("u1")

        result = await engine.update_user_capabilities("u1", env.org, {sales.id, support.id})

        assert result.success
        assert result.changes == []
        assert directory.mutations() == first_calls
        second_rows = await env.rows("u1")
        assert {k: (r.id, r.is_active, r.group_id) for k, r in first_rows.items()} == \
            {k: (r.id, r.is_active, r.group_id) for k, r in second_rows.items()}

    @pytest.mark.asyncio
    async def test_already_member_is_recorded_without_add(self, env, engine, directory):
        sales = await env.agent_type("sales", "g-sales")
        directory.create_group("g-sales", {"u1"})

        result = await engine.update_user_capabilities("u1", env.org, {sales.id})

        assert result.changes[0].outcome == ChangeOutcome.ALREADY_CONVERGED
        assert directory.mutations() == []
        assert (await env.rows("u1"))[sales.id].is_active

    @pytest.mark.asyncio
    async def test_regrant_reuses_row_with_current_mapping(self, env, engine, directory):
        """A re-granted row gets the current group, not the historical one"""
        sales = await env.agent_type("sales", "g-sales")
        old = await env.row("u1", sales, group_id="g-retired", is_active=False)

        await engine.update_user_capabilities("u1", env.org, {sales.id})

        rows = await env.repository.assignments.list_for_user("u1", env.org, active=None)
        assert len(rows) == 1
        assert rows[0].id == old.id
        assert rows[0].is_active
        assert rows[0].group_id == "g-sales"
        assert directory.is_member("u1", "g-sales")

    @pytest.mark.asyncio
    async def test_memberships_unavailable_still_adds(self, env, engine, directory):
        sales = await env.agent_type("sales", "g-sales")
        directory.unavailable_users.add("u1")

        result = await engine.update_user_capabilities("u1", env.org, {sales.id})

        assert result.changes[0].outcome == ChangeOutcome.APPLIED
        assert directory.mutations("add") == [("add", "u1", "g-sales")]


class TestGrantEdgeCases:
    """Grants that cannot be fully satisfied"""

    @pytest.mark.asyncio
    async def test_missing_group_records_row_without_directory_call(self, env, engine, directory):
        ghost = await env.agent_type("ghost", "g-deleted")

        result = await engine.update_user_capabilities("u1", env.org, {ghost.id})

        change = result.changes[0]
        assert change.outcome == ChangeOutcome.DEFERRED
        assert directory.mutations() == []
        row = (await env.rows("u1"))[ghost.id]
        assert row.is_active
        assert row.group_id == "g-deleted"

    @pytest.mark.asyncio
    async def test_agent_type_without_group_is_unresolved(self, env, engine, directory):
        unmapped = await env.agent_type("unmapped")

        result = await engine.update_user_capabilities("u1", env.org, {unmapped.id})

        assert not result.success
        assert [c.agent_type_id for c in result.unresolved] == [unmapped.id]
        assert await env.rows("u1") == {}
        assert directory.mutations() == []

    @pytest.mark.asyncio
    async def test_unknown_agent_type_is_unresolved(self, env, engine):
        from uuid import uuid4
        unknown = uuid4()

        result = await engine.update_user_capabilities("u1", env.org, {unknown})

        assert result.unresolved[0].agent_type_id == unknown
        assert result.unresolved[0].detail == "agent type not found"

    @pytest.mark.asyncio
    async def test_unresolved_does_not_block_other_grants(self, env, engine, directory):
        sales = await env.agent_type("sales", "g-sales")
        unmapped = await env.agent_type("unmapped")

        result = await engine.update_user_capabilities("u1", env.org, {sales.id, unmapped.id})

        assert result.success
        assert len(result.unresolved) == 1
        assert directory.is_member("u1", "g-sales")

    @pytest.mark.asyncio
    async def test_failed_add_is_recorded_for_later_repair(self, env, engine, directory):
        sales = await env.agent_type("sales", "g-sales")
        directory.fail_adds.add(("u1", "g-sales"))

        result = await engine.update_user_capabilities("u1", env.org, {sales.id})

        assert not result.success
        assert result.changes[0].outcome == ChangeOutcome.FAILED
        assert (await env.rows("u1"))[sales.id].is_active


class TestFailedGrantsNotRecorded:
    """record_failed_grants switched off"""

    @pytest.fixture
    def policy(self):
        return ReconciliationConfig(record_failed_grants=False)

    @pytest.mark.asyncio
    async def test_failed_add_writes_no_row(self, env, engine, directory):
        sales = await env.agent_type("sales", "g-sales")
        directory.fail_adds.add(("u1", "g-sales"))

        result = await engine.update_user_capabilities("u1", env.org, {sales.id})

        assert result.changes[0].outcome == ChangeOutcome.FAILED
        assert await env.rows("u1") == {}


class TestRevokeEdgeCases:
    """Removals that need no directory call"""

    @pytest.mark.asyncio
    async def test_vanished_group_is_vacuous_success(self, env, engine, directory):
        sales = await env.agent_type("sales", "g-sales")
        await env.row("u1", sales, group_id="g-vanished")

        result = await engine.update_user_capabilities("u1", env.org, [])

        assert result.changes[0].outcome == ChangeOutcome.APPLIED
        assert result.changes[0].action == ChangeAction.REMOVE
        assert directory.mutations() == []
        assert not (await env.rows("u1"))[sales.id].is_active

    @pytest.mark.asyncio
    async def test_non_member_is_deactivated_without_call(self, env, engine, directory):
        sales = await env.agent_type("sales", "g-sales")
        await env.row("u1", sales)

        result = await engine.update_user_capabilities("u1", env.org, [])

        assert result.changes[0].outcome == ChangeOutcome.ALREADY_CONVERGED
        assert directory.mutations() == []
        assert not (await env.rows("u1"))[sales.id].is_active

    @pytest.mark.asyncio
    async def test_membership_kept_when_another_organization_holds_it(self, env, engine, directory):
        sales = await env.agent_type("sales", "g-sales")
        await env.row("u1", sales)
        await env.row("u1", sales, organization_id=env.other_org)
        directory.create_group("g-sales", {"u1"})

        await engine.update_user_capabilities("u1", env.org, [])

        assert directory.mutations() == []
        assert directory.is_member("u1", "g-sales")
        assert not (await env.rows("u1"))[sales.id].is_active
        assert (await env.rows("u1", env.other_org))[sales.id].is_active


class TestValidation:
    """Malformed requests are rejected before any mutation"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("user_id", ["", "has space", None, 42])
    async def test_malformed_user_id(self, env, engine, directory, user_id):
        sales = await env.agent_type("sales", "g-sales")
        with pytest.raises(ValidationError):
            await engine.update_user_capabilities(user_id, env.org, {sales.id})
        assert directory.mutations() == []

    @pytest.mark.asyncio
    async def test_malformed_organization_id(self, engine):
        with pytest.raises(ValidationError):
            await engine.update_user_capabilities("u1", "not-an-org", [])

    @pytest.mark.asyncio
    async def test_malformed_agent_type_id(self, env, engine, directory):
        sales = await env.agent_type("sales", "g-sales")
        with pytest.raises(ValidationError):
            await engine.update_user_capabilities("u1", env.org, [sales.id, "nope"])
        assert directory.mutations() == []
        assert await env.rows("u1") == {}

    @pytest.mark.asyncio
    async def test_string_ids_are_accepted(self, env, engine, directory):
        sales = await env.agent_type("sales", "g-sales")

        result = await engine.update_user_capabilities("u1", str(env.org), [str(sales.id)])

        assert result.success
        assert directory.is_member("u1", "g-sales")


class TestRequireCapability:

    @pytest.fixture
    def policy(self):
        return ReconciliationConfig(require_capability=True)

    @pytest.mark.asyncio
    async def test_empty_set_rejected(self, env, engine, directory):
        sales = await env.agent_type("sales", "g-sales")
        await env.row("u1", sales)
        directory.create_group("g-sales", {"u1"})

        with pytest.raises(ValidationError):
            await engine.update_user_capabilities("u1", env.org, [])

        assert directory.mutations() == []
        assert (await env.rows("u1"))[sales.id].is_active


class TestDesiredSetProjection:

    @pytest.mark.asyncio
    async def test_desired_set_follows_active_rows(self, env, engine):
        sales = await env.agent_type("sales", "g-sales")
        support = await env.agent_type("support", "g-support")

        await engine.update_user_capabilities("u1", env.org, {sales.id, support.id})
        assert await engine.get_desired_capabilities("u1", env.org) == {sales.id, support.id}

        await engine.update_user_capabilities("u1", env.org, {support.id})
        assert await engine.get_desired_capabilities("u1", env.org) == {support.id}

    @pytest.mark.asyncio
    async def test_locks_are_released(self, env, engine):
        sales = await env.agent_type("sales", "g-sales")
        await engine.update_user_capabilities("u1", env.org, {sales.id})
        assert len(engine.locks) == 0
