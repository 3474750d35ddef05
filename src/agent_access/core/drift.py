"""
Drift detection and repair

Compares a user's assignment rows with actual directory membership and
repairs whichever side is behind:

    active row | in directory | action
    -----------+--------------+---------------------------------------------
    yes        | yes          | none
    yes        | no           | add membership
    no         | yes          | directory wins: reactivate or create the row
               |              | ledger wins: remove the membership
    no         | no           | none

Each row's group is corrected to the agent type's current mapping before the
matrix is applied. A second pass over a converged user makes no mutation.
"""

import logging
from typing import Any, Dict, Optional

from ..data.models.access import AgentType, Assignment
from .reconciler import MembershipReconciler, UserPass, coerce_uuid, validate_user_id
from .results import DriftFinding, DriftReport, DriftState, Lookup

logger = logging.getLogger(__name__)


class DriftRepairer:
    """Runs drift repair passes through a MembershipReconciler's pass machinery."""

    def __init__(self, reconciler: MembershipReconciler):
        self.reconciler = reconciler
        self.registry = reconciler.registry
        self.directory = reconciler.directory
        self.policy = reconciler.policy

    async def sync_user(
        self,
        user_id: str,
        organization_id: Any,
        repaired_by: Optional[str] = None,
    ) -> DriftReport:
        """Detect and repair drift for one user in one organization."""
        user_id = validate_user_id(user_id)
        organization_id = coerce_uuid(organization_id, "organization id")
        report = DriftReport(user_id, organization_id)

        async with self.reconciler.locks.hold(user_id, organization_id):
            user_pass = await self.reconciler.begin_pass(user_id, organization_id, repaired_by)
            if user_pass.memberships is None:
                report.errors.append(f"Memberships for {user_id} could not be listed")
                return report

            candidates = await self._candidates(user_pass)
            for agent_type in candidates.values():
                finding = await self._repair(user_pass, agent_type, report)
                if finding is not None:
                    report.findings.append(finding)

            await self.reconciler.commit_pass(user_pass)

        if report.drift_found:
            logger.info(
                f"Drift pass for {user_id}: {len(report.repairs)} repaired, "
                f"{len(report.corrected_groups)} groups corrected"
            )
        return report

    async def _candidates(self, user_pass: UserPass) -> Dict[Any, AgentType]:
        """Active agent types with a group; rows for anything else are left alone."""
        candidates = {a.id: a for a in await self.registry.list_active(with_group_only=True)}
        for agent_type_id, row in user_pass.rows.items():
            if row.is_active and agent_type_id not in candidates:
                logger.warning(
                    f"Active row for {user_pass.user_id} references agent type {agent_type_id} "
                    f"that is disabled, unmapped or missing; skipping"
                )
        return candidates

    async def _repair(
        self, user_pass: UserPass, agent_type: AgentType, report: DriftReport
    ) -> Optional[DriftFinding]:
        group_id = agent_type.group_id
        row = user_pass.rows.get(agent_type.id)
        has_active_row = row is not None and row.is_active

        if row is not None and row.group_id != group_id:
            report.corrected_groups[agent_type.id] = group_id
            logger.info(
                f"Row for {user_pass.user_id}/{agent_type.label} points at "
                f"{row.group_id or '-'}, correcting to {group_id}"
            )
            row.retarget(group_id)
            user_pass.stage(row)

        lookup = await self.reconciler.resolve_group(user_pass, group_id)
        if lookup.is_transient:
            report.errors.append(f"Group {group_id} could not be resolved: {lookup.reason}")
            return None
        in_directory = lookup.is_found and bool(user_pass.is_member(lookup.value))

        if has_active_row and in_directory:
            return DriftFinding(agent_type.id, group_id, DriftState.CONVERGED)
        if not has_active_row and not in_directory:
            return None
        if has_active_row:
            return await self._repair_directory(user_pass, agent_type, lookup)
        if await self.reconciler.held_elsewhere(user_pass, agent_type.id):
            # Membership belongs to another organization's grant
            return None
        return await self._repair_ledger(user_pass, agent_type, row, lookup.value)

    async def _repair_directory(
        self, user_pass: UserPass, agent_type: AgentType, lookup: Lookup[str]
    ) -> DriftFinding:
        group_id = agent_type.group_id
        finding = DriftFinding(agent_type.id, group_id, DriftState.MISSING_IN_DIRECTORY)

        if lookup.is_not_found:
            finding.detail = "directory group does not exist"
            logger.warning(f"Cannot repair {user_pass.user_id}: group {group_id} does not exist")
            return finding

        if await self.directory.add_membership(user_pass.user_id, lookup.value):
            user_pass.memberships.add(lookup.value)
            finding.repaired = True
            logger.info(f"Repaired missing membership of {user_pass.user_id} in {group_id}")
        else:
            finding.detail = "directory add failed"
            logger.warning(f"Could not repair membership of {user_pass.user_id} in {group_id}")
        return finding

    async def _repair_ledger(
        self,
        user_pass: UserPass,
        agent_type: AgentType,
        row: Optional[Assignment],
        object_id: str,
    ) -> DriftFinding:
        group_id = agent_type.group_id
        finding = DriftFinding(agent_type.id, group_id, DriftState.MISSING_IN_LEDGER)
        logger.warning(
            f"Sync anomaly: {user_pass.user_id} is a member of {group_id} ({agent_type.label}) "
            f"without an active assignment; {self.policy.drift_winner} wins"
        )

        if self.policy.directory_wins:
            if row is None:
                row = Assignment.create(
                    user_id=user_pass.user_id,
                    agent_type_id=agent_type.id,
                    organization_id=user_pass.organization_id,
                    group_id=group_id,
                    assigned_by=user_pass.actor,
                )
            else:
                row.reactivate(group_id=group_id, assigned_by=user_pass.actor)
            user_pass.stage(row)
            finding.repaired = True
            return finding

        if await self.directory.remove_membership(user_pass.user_id, object_id):
            user_pass.memberships.discard(object_id)
            finding.repaired = True
        else:
            finding.detail = "directory remove failed"
        return finding
