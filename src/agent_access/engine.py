"""
Reconciliation Engine

Single entry point composing the agent type registry, the single-user
reconciler, drift repair and bulk propagation over one repository and one
directory client. The engine subscribes to registry events, so changing an
agent type's group or disabling it propagates to every holder.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional, Set
from uuid import UUID

from config.schema import ReconciliationConfig

from .core.agent_types import AgentTypeDisabled, AgentTypeRegistry, GroupMappingChanged
from .core.drift import DriftRepairer
from .core.locks import UserLockRegistry
from .core.propagation import BulkPropagator
from .core.reconciler import MembershipReconciler
from .core.results import BulkResult, DriftReport, ReconcileResult
from .core.status import OperationStatusReporter
from .data.models.access import Assignment
from .data.repos.access import AccessRepository
from .directory.base import DirectoryClient
from .directory.guarded import GuardedDirectory

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    """
    Membership reconciliation engine.

    Example:
        engine = ReconciliationEngine(AccessRepository(), InMemoryDirectory())
        sales = await engine.registry.create(AgentType(name="SalesAgent", group_id="g-sales"))
        result = await engine.update_user_capabilities("user-1", org_id, {sales.id})
    """

    def __init__(
        self,
        repository: AccessRepository,
        directory: DirectoryClient,
        policy: Optional[ReconciliationConfig] = None,
        reporter: Optional[OperationStatusReporter] = None,
    ):
        self.policy = policy or ReconciliationConfig()
        self.repository = repository
        if isinstance(directory, GuardedDirectory):
            self.directory = directory
        else:
            self.directory = GuardedDirectory(directory, timeout=self.policy.directory_call_timeout_seconds)
        self.reporter = reporter or OperationStatusReporter()
        self.locks = UserLockRegistry()

        self.registry = AgentTypeRegistry(repository.agent_types)
        self.reconciler = MembershipReconciler(
            repository, self.registry, self.directory, self.policy, self.locks
        )
        self.drift = DriftRepairer(self.reconciler)
        self.bulk = BulkPropagator(self.reconciler, self.drift, self.reporter)

        self.registry.subscribe(self.handle_agent_type_event)

    # Single user

    async def update_user_capabilities(
        self, user_id: str, organization_id: Any, desired: Iterable[Any], assigned_by: Optional[str] = None
    ) -> ReconcileResult:
        return await self.reconciler.update_user_capabilities(user_id, organization_id, desired, assigned_by)

    async def assign_user_to_capabilities(
        self, user_id: str, organization_id: Any, agent_type_ids: Iterable[Any], assigned_by: Optional[str] = None
    ) -> ReconcileResult:
        return await self.reconciler.assign_user_to_capabilities(
            user_id, organization_id, agent_type_ids, assigned_by
        )

    async def remove_user_from_all_capabilities(
        self, user_id: str, organization_id: Any, removed_by: Optional[str] = None
    ) -> ReconcileResult:
        return await self.reconciler.remove_user_from_all_capabilities(user_id, organization_id, removed_by)

    async def deactivate_user_assignments(
        self, user_id: str, organization_id: Any, deactivated_by: Optional[str] = None
    ) -> ReconcileResult:
        return await self.reconciler.deactivate_user_assignments(user_id, organization_id, deactivated_by)

    async def reactivate_user_assignments(
        self,
        user_id: str,
        organization_id: Any,
        since: Optional[datetime] = None,
        reactivated_by: Optional[str] = None,
    ) -> ReconcileResult:
        return await self.reconciler.reactivate_user_assignments(
            user_id, organization_id, since, reactivated_by
        )

    async def validate_and_repair_groups(self, user_id: str, organization_id: Any) -> List[str]:
        return await self.reconciler.validate_and_repair_groups(user_id, organization_id)

    async def sync_user(
        self, user_id: str, organization_id: Any, repaired_by: Optional[str] = None
    ) -> DriftReport:
        return await self.drift.sync_user(user_id, organization_id, repaired_by)

    # Queries

    async def get_user_assignments(
        self, user_id: str, organization_id: Any, include_inactive: bool = False
    ) -> List[Assignment]:
        return await self.reconciler.get_user_assignments(user_id, organization_id, include_inactive)

    async def get_users_for_capability(self, agent_type_id: Any, organization_id: Any) -> List[str]:
        return await self.reconciler.get_users_for_capability(agent_type_id, organization_id)

    async def get_desired_capabilities(self, user_id: str, organization_id: Any) -> Set[UUID]:
        return await self.reconciler.get_desired_capabilities(user_id, organization_id)

    # Bulk

    async def grant_to_all(
        self,
        organization_id: Any,
        agent_type_id: Any,
        granted_by: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BulkResult:
        return await self.bulk.grant_to_all(organization_id, agent_type_id, granted_by, cancel_event)

    async def revoke_from_all(
        self,
        organization_id: Any,
        agent_type_id: Any,
        revoked_by: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BulkResult:
        return await self.bulk.revoke_from_all(organization_id, agent_type_id, revoked_by, cancel_event)

    async def sync_organization(
        self,
        organization_id: Any,
        repaired_by: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BulkResult:
        return await self.bulk.sync_organization(organization_id, repaired_by, cancel_event)

    # Registry events

    async def handle_agent_type_event(self, event: Any) -> Optional[BulkResult]:
        if isinstance(event, GroupMappingChanged):
            return await self.bulk.propagate_mapping_change(
                event.agent_type_id, event.old_group_id, event.new_group_id, event.changed_by
            )
        if isinstance(event, AgentTypeDisabled):
            return await self.bulk.cascade_disable(event.agent_type_id, event.changed_by)
        logger.debug(f"Ignoring agent type event {event}")
        return None

    async def close(self) -> None:
        await self.directory.close()
