"""
Bulk propagation

Applies one agent-type-level change to every affected user:
grant-to-all and revoke-from-all within an organization, organization-wide
drift sync, group mapping migration and the disable cascade across every
organization.

Users are processed independently with bounded concurrency. One user's
failure is recorded and never aborts the others. The aggregate result is
successful when the share of users that succeeded meets the configured
threshold.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Tuple
from uuid import UUID

from .drift import DriftRepairer
from .errors import AgentTypeNotFoundError, ValidationError
from .reconciler import MembershipReconciler, coerce_uuid
from .results import BulkResult, CapabilityChange, DriftState
from .status import OperationStatusReporter

logger = logging.getLogger(__name__)

UserWork = Callable[[str], Awaitable[Optional[str]]]


class BulkPropagator:
    """
    Fleet-wide operations built on the single-user primitives.

    Every operation accepts an optional `cancel_event`; once it is set, users
    not yet started are skipped. Changes already applied stay applied.
    """

    def __init__(
        self,
        reconciler: MembershipReconciler,
        drift: DriftRepairer,
        reporter: Optional[OperationStatusReporter] = None,
    ):
        self.reconciler = reconciler
        self.drift = drift
        self.registry = reconciler.registry
        self.repository = reconciler.repository
        self.policy = reconciler.policy
        self.reporter = reporter

    async def grant_to_all(
        self,
        organization_id: Any,
        agent_type_id: Any,
        granted_by: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BulkResult:
        """
        Grant an agent type to every active user of an organization.

        Raises:
            AgentTypeNotFoundError: unknown agent type
            ValidationError: agent type disabled or without a group
        """
        organization_id = coerce_uuid(organization_id, "organization id")
        agent_type_id = coerce_uuid(agent_type_id, "agent type id")

        agent_type = await self.registry.get_by_id(agent_type_id)
        if agent_type is None:
            raise AgentTypeNotFoundError(agent_type_id)
        if not agent_type.is_active:
            raise ValidationError(f"Agent type {agent_type.label} is disabled")
        if not agent_type.has_group:
            raise ValidationError(f"Agent type {agent_type.label} has no directory group")

        users = await self.repository.users.list_active_by_organization(organization_id)
        user_ids = list(dict.fromkeys(u.directory_user_id for u in users))

        async def work(user_id: str) -> Optional[str]:
            change = await self.reconciler.grant_capability(
                user_id, organization_id, agent_type, granted_by
            )
            return _failure_reason(change)

        return await self._run_operation(
            "grant_all",
            f"Grant {agent_type.label} to {len(user_ids)} users in {organization_id}",
            user_ids,
            work,
            cancel_event,
        )

    async def revoke_from_all(
        self,
        organization_id: Any,
        agent_type_id: Any,
        revoked_by: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BulkResult:
        """Revoke an agent type from every holder in an organization. Rows always end inactive."""
        organization_id = coerce_uuid(organization_id, "organization id")
        agent_type_id = coerce_uuid(agent_type_id, "agent type id")

        user_ids = await self.reconciler.get_users_for_capability(agent_type_id, organization_id)

        async def work(user_id: str) -> Optional[str]:
            change = await self.reconciler.revoke_capability(
                user_id, organization_id, agent_type_id, revoked_by
            )
            return _failure_reason(change)

        return await self._run_operation(
            "revoke_all",
            f"Revoke agent type {agent_type_id} from {len(user_ids)} users in {organization_id}",
            user_ids,
            work,
            cancel_event,
        )

    async def sync_organization(
        self,
        organization_id: Any,
        repaired_by: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BulkResult:
        """Drift repair for every active user of an organization."""
        organization_id = coerce_uuid(organization_id, "organization id")
        users = await self.repository.users.list_active_by_organization(organization_id)
        user_ids = list(dict.fromkeys(u.directory_user_id for u in users))

        async def work(user_id: str) -> Optional[str]:
            report = await self.drift.sync_user(user_id, organization_id, repaired_by)
            if report.success:
                return None
            unrepaired = [
                f"{f.group_id}: {f.detail or f.state.value}"
                for f in report.findings if f.state != DriftState.CONVERGED and not f.repaired
            ]
            return "; ".join(report.errors + unrepaired) or "drift not repaired"

        return await self._run_operation(
            "sync_organization",
            f"Drift sync of {len(user_ids)} users in {organization_id}",
            user_ids,
            work,
            cancel_event,
        )

    async def propagate_mapping_change(
        self,
        agent_type_id: Any,
        old_group_id: Optional[str],
        new_group_id: Optional[str],
        changed_by: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BulkResult:
        """Migrate every holder in every organization from the old group to the new one."""
        agent_type_id = coerce_uuid(agent_type_id, "agent type id")
        holders = await self._holders(agent_type_id)

        async def work(key: str) -> Optional[str]:
            user_id, organization_id = holders[key]
            change = await self.reconciler.migrate_capability(
                user_id, organization_id, agent_type_id, new_group_id, changed_by
            )
            return _failure_reason(change)

        return await self._run_operation(
            "mapping_change",
            f"Migrate agent type {agent_type_id} from group {old_group_id or '-'} "
            f"to {new_group_id or '-'} for {len(holders)} assignments",
            list(holders),
            work,
            cancel_event,
        )

    async def cascade_disable(
        self,
        agent_type_id: Any,
        revoked_by: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BulkResult:
        """
        Revoke a disabled agent type from every holder in every organization.

        Organizations are processed one after another so a user present in
        several organizations loses the membership with the last row.
        """
        agent_type_id = coerce_uuid(agent_type_id, "agent type id")
        organizations = await self.reconciler.assignments.organizations_for_agent_type(agent_type_id)
        logger.info(f"Disable cascade for agent type {agent_type_id} across {len(organizations)} organizations")

        operation_id = await self._start(
            "disable_cascade",
            f"Revoke agent type {agent_type_id} in {len(organizations)} organizations",
        )
        result = BulkResult("disable_cascade", self.policy.bulk_success_threshold)
        for organization_id in organizations:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                result.skipped.extend(
                    await self.reconciler.get_users_for_capability(agent_type_id, organization_id)
                )
                continue
            org_result = await self.revoke_from_all(
                organization_id, agent_type_id, revoked_by, cancel_event
            )
            result.processed.extend(f"{u}@{organization_id}" for u in org_result.processed)
            result.failures.update(
                {f"{u}@{organization_id}": reason for u, reason in org_result.failures.items()}
            )
            result.skipped.extend(org_result.skipped)
            result.cancelled = result.cancelled or org_result.cancelled
            await self._update(operation_id, "processing", f"organization {organization_id}: {org_result.summary()}")

        await self._finish(operation_id, result)
        return result

    # Internals

    async def _holders(self, agent_type_id: UUID) -> Dict[str, Tuple[str, UUID]]:
        """Active holders keyed by 'user@organization'."""
        rows = await self.reconciler.assignments.list_for_agent_type(agent_type_id)
        return {f"{r.user_id}@{r.organization_id}": (r.user_id, r.organization_id) for r in rows}

    async def _run_operation(
        self,
        operation: str,
        description: str,
        keys: Iterable[str],
        work: UserWork,
        cancel_event: Optional[asyncio.Event],
    ) -> BulkResult:
        keys = list(keys)
        operation_id = await self._start(operation, description)
        result = BulkResult(operation, self.policy.bulk_success_threshold)
        await self._run_bounded(result, keys, work, cancel_event, operation_id)
        await self._finish(operation_id, result)
        return result

    async def _run_bounded(
        self,
        result: BulkResult,
        keys: list,
        work: UserWork,
        cancel_event: Optional[asyncio.Event],
        operation_id: Optional[str],
    ) -> None:
        semaphore = asyncio.Semaphore(self.policy.max_concurrency)
        total = len(keys)

        async def run_one(key: str) -> None:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    result.cancelled = True
                    result.skipped.append(key)
                    return
                try:
                    reason = await work(key)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.exception(f"{result.operation} failed for {key}")
                    reason = str(e) or type(e).__name__

                if reason:
                    logger.warning(f"{result.operation} failed for {key}: {reason}")
                    result.record_failure(key, reason)
                else:
                    result.record_success(key)
                await self._update(operation_id, "processing", f"{result.total}/{total} users")

        await asyncio.gather(*(run_one(key) for key in keys))

    async def _start(self, operation: str, description: str) -> Optional[str]:
        if self.reporter is None:
            return None
        try:
            return await self.reporter.start(operation, description)
        except Exception as e:
            logger.warning(f"Status reporter unavailable for {operation}: {e}")
            return None

    async def _update(self, operation_id: Optional[str], phase: str, detail: str) -> None:
        if self.reporter is None or operation_id is None:
            return
        try:
            await self.reporter.update(operation_id, phase, detail)
        except Exception as e:
            logger.warning(f"Status update failed for {operation_id}: {e}")

    async def _finish(self, operation_id: Optional[str], result: BulkResult) -> None:
        result.finished_at = datetime.now(timezone.utc)
        logger.info(result.summary())
        if result.failures:
            logger.warning(f"{result.operation} failures: {result.failures}")
        if self.reporter is None or operation_id is None:
            return
        try:
            await self.reporter.complete(operation_id, result.success, result.summary())
        except Exception as e:
            logger.warning(f"Status completion failed for {operation_id}: {e}")


def _failure_reason(change: CapabilityChange) -> Optional[str]:
    if change.succeeded:
        return None
    return change.detail or change.outcome.value
