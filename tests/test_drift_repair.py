"""
Tests for drift detection and repair
"""

import pytest

from config.schema import ReconciliationConfig
from agent_access.core.results import DriftState


class TestDriftMatrix:
    """Each cell of the ledger/directory matrix, directory winning"""

    @pytest.mark.asyncio
    async def test_active_row_missing_membership_is_added(self, env, engine, directory):
        """Row says the user holds X in G but the directory disagrees"""
        sales = await env.agent_type("sales", "g-sales")
        await env.row("u1", sales)

        report = await engine.sync_user("u1", env.org)

        assert directory.mutations() == [("add", "u1", "g-sales")]
        assert (await env.rows("u1"))[sales.id].is_active
        assert report.drift_found
        assert report.success
        finding = report.findings[0]
        assert finding.state == DriftState.MISSING_IN_DIRECTORY
        assert finding.repaired

    @pytest.mark.asyncio
    async def test_converged_user_needs_nothing(self, env, engine, directory):
        sales = await env.agent_type("sales", "g-sales")
        await env.row("u1", sales)
        directory.create_group("g-sales", {"u1"})

        report = await engine.sync_user("u1", env.org)

        assert directory.mutations() == []
        assert not report.drift_found
        assert report.success
        assert [f.state for f in report.findings] == [DriftState.CONVERGED]

    @pytest.mark.asyncio
    async def test_no_row_no_membership_is_ignored(self, env, engine, directory):
        await env.agent_type("sales", "g-sales")

        report = await engine.sync_user("u1", env.org)

        assert report.findings == []
        assert directory.mutations() == []
        assert await env.rows("u1") == {}

    @pytest.mark.asyncio
    async def test_undocumented_membership_creates_row(self, env, engine, directory, caplog):
        support = await env.agent_type("support", "g-support")
        directory.create_group("g-support", {"u1"})

        with caplog.at_level("WARNING"):
            report = await engine.sync_user("u1", env.org, "auditor")

        row = (await env.rows("u1"))[support.id]
        assert row.is_active
        assert row.group_id == "g-support"
        assert row.assigned_by == "auditor"
        assert directory.mutations() == []
        assert report.findings[0].state == DriftState.MISSING_IN_LEDGER
        assert report.findings[0].repaired
        assert "Sync anomaly" in caplog.text

    @pytest.mark.asyncio
    async def test_undocumented_membership_reactivates_existing_row(self, env, engine, directory):
        support = await env.agent_type("support", "g-support")
        old = await env.row("u1", support, is_active=False)
        directory.create_group("g-support", {"u1"})

        await engine.sync_user("u1", env.org)

        rows = await env.repository.assignments.list_for_user("u1", env.org, active=None)
        assert len(rows) == 1
        assert rows[0].id == old.id
        assert rows[0].is_active

    @pytest.mark.asyncio
    async def test_membership_from_another_organization_is_not_copied(self, env, engine, directory):
        sales = await env.agent_type("sales", "g-sales")
        await env.row("u1", sales, organization_id=env.other_org)
        directory.create_group("g-sales", {"u1"})

        report = await engine.sync_user("u1", env.org)

        assert await env.rows("u1") == {}
        assert report.findings == []


class TestDriftIdempotence:

    @pytest.mark.asyncio
    async def test_second_pass_makes_no_mutation(self, env, engine, directory):
        sales = await env.agent_type("sales", "g-sales")
        support = await env.agent_type("support", "g-support")
        await env.row("u1", sales)
        directory.create_group("g-support", {"u1"})

        first = await engine.sync_user("u1", env.org)
        calls_after_first = directory.mutations()
        second = await engine.sync_user("u1", env.org)

        assert first.drift_found
        assert not second.drift_found
        assert directory.mutations() == calls_after_first
        rows = await env.rows("u1")
        assert rows[sales.id].is_active and rows[support.id].is_active


class TestStaleGroups:
    """Rows pointing at an outdated group are corrected to the current mapping"""

    @pytest.mark.asyncio
    async def test_row_group_corrected_and_membership_added(self, env, engine, directory):
        sales = await env.agent_type("sales", "g-sales")
        await env.row("u1", sales)
        directory.create_group("g-sales", {"u1"})
        # Mapping changed behind the registry's back
        await env.repository.agent_types.update(sales.id, group_id="g-sales-2")

        report = await engine.sync_user("u1", env.org)

        assert report.corrected_groups == {sales.id: "g-sales-2"}
        assert (await env.rows("u1"))[sales.id].group_id == "g-sales-2"
        assert directory.mutations() == [("add", "u1", "g-sales-2")]

    @pytest.mark.asyncio
    async def test_missing_group_cannot_be_repaired(self, env, engine, directory):
        ghost = await env.agent_type("ghost", "g-deleted")
        await env.row("u1", ghost)

        report = await engine.sync_user("u1", env.org)

        assert directory.mutations() == []
        assert not report.success
        assert report.findings[0].detail == "directory group does not exist"
        assert (await env.rows("u1"))[ghost.id].is_active

    @pytest.mark.asyncio
    async def test_unlistable_memberships_reported(self, env, engine, directory):
        sales = await env.agent_type("sales", "g-sales")
        await env.row("u1", sales)
        directory.unavailable_users.add("u1")

        report = await engine.sync_user("u1", env.org)

        assert report.errors
        assert not report.success
        assert directory.mutations() == []


class TestLedgerWins:
    """drift_winner=ledger removes undocumented memberships"""

    @pytest.fixture
    def policy(self):
        return ReconciliationConfig(drift_winner="ledger")

    @pytest.mark.asyncio
    async def test_undocumented_membership_removed(self, env, engine, directory):
        support = await env.agent_type("support", "g-support")
        directory.create_group("g-support", {"u1"})

        report = await engine.sync_user("u1", env.org)

        assert directory.mutations() == [("remove", "u1", "g-support")]
        assert not directory.is_member("u1", "g-support")
        assert support.id not in await env.rows("u1")
        assert report.findings[0].repaired

    @pytest.mark.asyncio
    async def test_active_row_still_repairs_directory(self, env, engine, directory):
        sales = await env.agent_type("sales", "g-sales")
        await env.row("u1", sales)

        await engine.sync_user("u1", env.org)

        assert directory.is_member("u1", "g-sales")


class TestSyncOrganization:

    @pytest.mark.asyncio
    async def test_repairs_every_active_user(self, env, engine, directory):
        sales = await env.agent_type("sales", "g-sales")
        for user_id in ("u1", "u2", "u3"):
            await env.user(user_id)
            await env.row(user_id, sales)

        result = await engine.sync_organization(env.org)

        assert result.success
        assert result.total == 3
        assert directory.members("g-sales") == {"u1", "u2", "u3"}

    @pytest.mark.asyncio
    async def test_unrepairable_user_is_a_failure(self, env, engine, directory):
        sales = await env.agent_type("sales", "g-sales")
        for user_id in ("u1", "u2"):
            await env.user(user_id)
            await env.row(user_id, sales)
        directory.fail_adds.add(("u2", "g-sales"))

        result = await engine.sync_organization(env.org)

        assert result.total == 2
        assert list(result.failures) == ["u2"]
        assert "directory add failed" in result.failures["u2"]
        assert not result.success
