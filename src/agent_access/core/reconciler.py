"""
Membership Reconciler

Converges one user's assignment rows and directory memberships with the
agent types the user should hold in an organization.

Every public operation runs under the per-(user, organization) lock, reads
the user's rows and directory memberships once, and commits all row changes
for the pass in a single store write. Directory failures never raise here:
they show up as FAILED or DEFERRED outcomes in the returned result.

Asymmetry between grant and revoke:
- A failed add still records the active row (when `record_failed_grants` is
  on) so a later drift repair retries the membership.
- A revoke always deactivates the row, whether or not the directory removal
  went through.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Set
from uuid import UUID

from ..data.models.access import AgentType, Assignment
from ..data.repos.access import AccessRepository, latest_by_agent_type
from .agent_types import AgentTypeRegistry
from .errors import ValidationError
from .locks import UserLockRegistry
from .results import CapabilityChange, ChangeAction, ChangeOutcome, Lookup, ReconcileResult

if TYPE_CHECKING:
    from config.schema import ReconciliationConfig

    from ..directory.base import DirectoryClient

logger = logging.getLogger(__name__)


def validate_user_id(user_id: Any) -> str:
    """Directory object ids are non-empty and contain no whitespace."""
    if not isinstance(user_id, str) or not user_id or any(c.isspace() for c in user_id):
        raise ValidationError(f"Malformed user id: {user_id!r}")
    return user_id


def coerce_uuid(value: Any, label: str = "id") -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"Malformed {label}: {value!r}") from None


@dataclass
class UserPass:
    """
    Working state for one reconciliation pass over one user.

    `rows` holds one row per agent type (the active one if any). Changed rows
    are staged in `pending` and written together by `commit_pass`.
    `memberships` is None when the directory could not list them. It holds
    resolved group object ids; `groups` caches the resolution of each mapped
    group reference (object id or display name) for the pass.
    """
    user_id: str
    organization_id: UUID
    actor: Optional[str]
    rows: Dict[UUID, Assignment]
    memberships: Optional[Set[str]]
    pending: Dict[UUID, Assignment] = field(default_factory=dict)
    groups: Dict[str, Lookup] = field(default_factory=dict)

    def stage(self, row: Assignment) -> None:
        self.rows[row.agent_type_id] = row
        self.pending[row.id] = row

    def active_agent_type_ids(self) -> Set[UUID]:
        return {agent_type_id for agent_type_id, row in self.rows.items() if row.is_active}

    def is_member(self, object_id: str) -> Optional[bool]:
        if self.memberships is None:
            return None
        return object_id in self.memberships


class MembershipReconciler:
    """
    Single-user diff and apply.

    Example:
        reconciler = MembershipReconciler(repository, registry, directory, policy)
        result = await reconciler.update_user_capabilities(
            user_id, organization_id, {sales_agent.id, support_agent.id},
            assigned_by="admin@example.com",
        )
        if not result.success:
            print(result.summary())
    """

    def __init__(
        self,
        repository: AccessRepository,
        registry: AgentTypeRegistry,
        directory: "DirectoryClient",
        policy: "ReconciliationConfig",
        locks: Optional[UserLockRegistry] = None,
    ):
        self.repository = repository
        self.assignments = repository.assignments
        self.registry = registry
        self.directory = directory
        self.policy = policy
        self.locks = locks or UserLockRegistry()

    # Pass machinery

    async def begin_pass(
        self, user_id: str, organization_id: UUID, actor: Optional[str] = None
    ) -> UserPass:
        """Load the user's rows and a membership snapshot. Caller holds the lock."""
        rows = await self.assignments.list_for_user(user_id, organization_id, active=None)

        lookup = await self.directory.fetch_memberships(user_id)
        if lookup.is_found:
            memberships: Optional[Set[str]] = set(lookup.value)
        elif lookup.is_not_found:
            memberships = set()
        else:
            logger.warning(f"Memberships unavailable for {user_id}: {lookup.reason}")
            memberships = None

        return UserPass(
            user_id=user_id,
            organization_id=organization_id,
            actor=actor or self.policy.system_actor,
            rows=latest_by_agent_type(rows),
            memberships=memberships,
        )

    async def commit_pass(self, user_pass: UserPass) -> None:
        """Write every staged row for the pass in one store call."""
        if not user_pass.pending:
            return
        await self.assignments.save_many(list(user_pass.pending.values()))
        logger.debug(f"Committed {len(user_pass.pending)} assignment rows for {user_pass.user_id}")
        user_pass.pending.clear()

    # Single-user operations

    async def update_user_capabilities(
        self,
        user_id: str,
        organization_id: Any,
        desired: Iterable[Any],
        assigned_by: Optional[str] = None,
    ) -> ReconcileResult:
        """
        Converge a user onto a full desired set of agent type ids.

        Agent types in the desired set but not currently active are granted,
        active ones missing from it are revoked, and the rest are left alone.

        Raises:
            ValidationError: malformed ids, or an empty set when policy
                requires at least one agent type
        """
        user_id = validate_user_id(user_id)
        organization_id = coerce_uuid(organization_id, "organization id")
        desired_ids = {coerce_uuid(d, "agent type id") for d in desired}
        if not desired_ids and self.policy.require_capability:
            raise ValidationError(f"At least one agent type is required for user {user_id}")

        result = ReconcileResult(user_id, organization_id)
        async with self.locks.hold(user_id, organization_id):
            user_pass = await self.begin_pass(user_id, organization_id, assigned_by)
            current = user_pass.active_agent_type_ids()
            to_add = desired_ids - current
            to_remove = current - desired_ids

            logger.info(
                f"Reconciling {user_id} in {organization_id}: "
                f"{len(to_add)} to add, {len(to_remove)} to remove"
            )

            agent_types = {a.id: a for a in await self.registry.get_by_ids(to_add)}
            for agent_type_id in sorted(to_add, key=str):
                result.changes.append(
                    await self.apply_add(user_pass, agent_type_id, agent_types.get(agent_type_id))
                )
            for agent_type_id in sorted(to_remove, key=str):
                result.changes.append(
                    await self.apply_remove(user_pass, user_pass.rows[agent_type_id])
                )

            await self.commit_pass(user_pass)

        self._log_result(result)
        return result

    async def assign_user_to_capabilities(
        self,
        user_id: str,
        organization_id: Any,
        agent_type_ids: Iterable[Any],
        assigned_by: Optional[str] = None,
    ) -> ReconcileResult:
        """Grant agent types without revoking anything the user already holds."""
        user_id = validate_user_id(user_id)
        organization_id = coerce_uuid(organization_id, "organization id")
        requested = {coerce_uuid(a, "agent type id") for a in agent_type_ids}

        result = ReconcileResult(user_id, organization_id)
        async with self.locks.hold(user_id, organization_id):
            user_pass = await self.begin_pass(user_id, organization_id, assigned_by)
            to_add = requested - user_pass.active_agent_type_ids()
            agent_types = {a.id: a for a in await self.registry.get_by_ids(to_add)}
            for agent_type_id in sorted(to_add, key=str):
                result.changes.append(
                    await self.apply_add(user_pass, agent_type_id, agent_types.get(agent_type_id))
                )
            await self.commit_pass(user_pass)

        self._log_result(result)
        return result

    async def remove_user_from_all_capabilities(
        self,
        user_id: str,
        organization_id: Any,
        removed_by: Optional[str] = None,
    ) -> ReconcileResult:
        """Revoke everything a user holds in an organization (user deletion)."""
        result = await self._revoke_all(user_id, organization_id, removed_by)
        logger.info(f"Removed {user_id} from all agent types: {result.summary()}")
        return result

    async def deactivate_user_assignments(
        self,
        user_id: str,
        organization_id: Any,
        deactivated_by: Optional[str] = None,
    ) -> ReconcileResult:
        """
        Soft delete a user's access.

        Memberships are removed and rows deactivated; the rows stay in the
        ledger so `reactivate_user_assignments` can restore them.
        """
        result = await self._revoke_all(user_id, organization_id, deactivated_by)
        logger.info(f"Deactivated assignments for {user_id}: {result.summary()}")
        return result

    async def reactivate_user_assignments(
        self,
        user_id: str,
        organization_id: Any,
        since: Optional[datetime] = None,
        reactivated_by: Optional[str] = None,
    ) -> ReconcileResult:
        """
        Restore deactivated rows and their memberships.

        Stale groups are repaired first, then every inactive row (or only
        those deactivated at or after `since`) is granted again with the
        agent type's current group.
        A naive `since` is taken as UTC.
        """
        user_id = validate_user_id(user_id)
        organization_id = coerce_uuid(organization_id, "organization id")

        if since is not None and since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)

        result = ReconcileResult(user_id, organization_id)
        async with self.locks.hold(user_id, organization_id):
            await self._repair_groups(user_id, organization_id)

            user_pass = await self.begin_pass(user_id, organization_id, reactivated_by)
            inactive = [
                row for row in user_pass.rows.values()
                if not row.is_active and (since is None or row.modified_at >= since)
            ]
            agent_types = {
                a.id: a for a in await self.registry.get_by_ids(r.agent_type_id for r in inactive)
            }
            for row in sorted(inactive, key=lambda r: r.assigned_at):
                result.changes.append(
                    await self.apply_add(user_pass, row.agent_type_id, agent_types.get(row.agent_type_id))
                )
            await self.commit_pass(user_pass)

        self._log_result(result)
        return result

    async def validate_and_repair_groups(self, user_id: str, organization_id: Any) -> List[str]:
        """
        Correct rows whose group differs from the agent type's current group.

        Returns:
            Group ids referenced by the user's rows that exist in the directory
        """
        user_id = validate_user_id(user_id)
        organization_id = coerce_uuid(organization_id, "organization id")
        async with self.locks.hold(user_id, organization_id):
            return await self._repair_groups(user_id, organization_id)

    # Single-capability primitives used by bulk operations

    async def grant_capability(
        self,
        user_id: str,
        organization_id: UUID,
        agent_type: AgentType,
        assigned_by: Optional[str] = None,
    ) -> CapabilityChange:
        async with self.locks.hold(user_id, organization_id):
            user_pass = await self.begin_pass(user_id, organization_id, assigned_by)
            change = await self.apply_add(user_pass, agent_type.id, agent_type)
            await self.commit_pass(user_pass)
            return change

    async def revoke_capability(
        self,
        user_id: str,
        organization_id: UUID,
        agent_type_id: UUID,
        revoked_by: Optional[str] = None,
    ) -> CapabilityChange:
        async with self.locks.hold(user_id, organization_id):
            user_pass = await self.begin_pass(user_id, organization_id, revoked_by)
            row = user_pass.rows.get(agent_type_id)
            if row is None or not row.is_active:
                return CapabilityChange(agent_type_id, ChangeAction.REMOVE, ChangeOutcome.ALREADY_CONVERGED)
            change = await self.apply_remove(user_pass, row)
            await self.commit_pass(user_pass)
            return change

    async def migrate_capability(
        self,
        user_id: str,
        organization_id: UUID,
        agent_type_id: UUID,
        new_group_id: Optional[str],
        migrated_by: Optional[str] = None,
    ) -> CapabilityChange:
        """Move a user's active row for an agent type onto its new group."""
        async with self.locks.hold(user_id, organization_id):
            user_pass = await self.begin_pass(user_id, organization_id, migrated_by)
            row = user_pass.rows.get(agent_type_id)
            if row is None or not row.is_active:
                return CapabilityChange(agent_type_id, ChangeAction.MIGRATE, ChangeOutcome.ALREADY_CONVERGED)
            change = await self.apply_migrate(user_pass, row, new_group_id or "")
            await self.commit_pass(user_pass)
            return change

    # Queries

    async def get_user_assignments(
        self, user_id: str, organization_id: Any, include_inactive: bool = False
    ) -> List[Assignment]:
        user_id = validate_user_id(user_id)
        organization_id = coerce_uuid(organization_id, "organization id")
        return await self.assignments.list_for_user(
            user_id, organization_id, active=None if include_inactive else True
        )

    async def get_users_for_capability(self, agent_type_id: Any, organization_id: Any) -> List[str]:
        """Directory user ids holding an active row for the agent type."""
        agent_type_id = coerce_uuid(agent_type_id, "agent type id")
        organization_id = coerce_uuid(organization_id, "organization id")
        rows = await self.assignments.list_for_agent_type(agent_type_id, organization_id)
        return list(dict.fromkeys(r.user_id for r in rows))

    async def get_desired_capabilities(self, user_id: str, organization_id: Any) -> Set[UUID]:
        """The user's desired set, projected from active rows."""
        rows = await self.get_user_assignments(user_id, organization_id)
        return {r.agent_type_id for r in rows}

    # Primitives

    async def apply_add(
        self,
        user_pass: UserPass,
        agent_type_id: UUID,
        agent_type: Optional[AgentType],
    ) -> CapabilityChange:
        """Grant one agent type within a pass."""
        if agent_type is None:
            logger.warning(f"Cannot grant unknown agent type {agent_type_id} to {user_pass.user_id}")
            return self._change(agent_type_id, ChangeAction.ADD, ChangeOutcome.UNRESOLVED,
                                detail="agent type not found")
        if not agent_type.is_active:
            logger.warning(f"Cannot grant disabled agent type {agent_type.label} to {user_pass.user_id}")
            return self._change(agent_type_id, ChangeAction.ADD, ChangeOutcome.UNRESOLVED,
                                detail="agent type disabled")
        if not agent_type.has_group:
            logger.warning(f"Agent type {agent_type.label} has no directory group, not granting")
            return self._change(agent_type_id, ChangeAction.ADD, ChangeOutcome.UNRESOLVED,
                                detail="no directory group mapped")

        group_id = agent_type.group_id
        lookup = await self.resolve_group(user_pass, group_id)
        if lookup.is_not_found:
            logger.warning(
                f"Group {group_id} for {agent_type.label} does not exist, "
                f"recording grant for {user_pass.user_id} without membership"
            )
            self._stage_active(user_pass, agent_type_id, group_id)
            return self._change(agent_type_id, ChangeAction.ADD, ChangeOutcome.DEFERRED, group_id,
                                "directory group does not exist")
        if lookup.is_transient:
            if self.policy.record_failed_grants:
                self._stage_active(user_pass, agent_type_id, group_id)
            return self._change(agent_type_id, ChangeAction.ADD, ChangeOutcome.FAILED, group_id,
                                lookup.reason)

        object_id = lookup.value
        if user_pass.is_member(object_id):
            self._stage_active(user_pass, agent_type_id, group_id)
            return self._change(agent_type_id, ChangeAction.ADD, ChangeOutcome.ALREADY_CONVERGED, group_id)

        if await self.directory.add_membership(user_pass.user_id, object_id):
            if user_pass.memberships is not None:
                user_pass.memberships.add(object_id)
            self._stage_active(user_pass, agent_type_id, group_id)
            logger.info(f"Added {user_pass.user_id} to group {group_id} ({agent_type.label})")
            return self._change(agent_type_id, ChangeAction.ADD, ChangeOutcome.APPLIED, group_id)

        logger.warning(f"Failed to add {user_pass.user_id} to group {group_id} ({agent_type.label})")
        if self.policy.record_failed_grants:
            self._stage_active(user_pass, agent_type_id, group_id)
        return self._change(agent_type_id, ChangeAction.ADD, ChangeOutcome.FAILED, group_id,
                            "directory add failed")

    async def apply_remove(self, user_pass: UserPass, row: Assignment) -> CapabilityChange:
        """Revoke one active row within a pass. The row always ends inactive."""
        group_id = row.group_id
        agent_type_id = row.agent_type_id

        if not group_id:
            self._stage_inactive(user_pass, row)
            return self._change(agent_type_id, ChangeAction.REMOVE, ChangeOutcome.APPLIED,
                                detail="no group recorded")

        lookup = await self.resolve_group(user_pass, group_id)
        if lookup.is_not_found:
            self._stage_inactive(user_pass, row)
            return self._change(agent_type_id, ChangeAction.REMOVE, ChangeOutcome.APPLIED, group_id,
                                "directory group no longer exists")
        if lookup.is_transient:
            logger.warning(
                f"Cannot resolve group {group_id} to remove {user_pass.user_id}; row deactivated anyway"
            )
            self._stage_inactive(user_pass, row)
            return self._change(agent_type_id, ChangeAction.REMOVE, ChangeOutcome.FAILED, group_id,
                                lookup.reason)

        object_id = lookup.value
        if user_pass.is_member(object_id) is False:
            self._stage_inactive(user_pass, row)
            return self._change(agent_type_id, ChangeAction.REMOVE, ChangeOutcome.ALREADY_CONVERGED, group_id)

        if await self.held_elsewhere(user_pass, agent_type_id):
            self._stage_inactive(user_pass, row)
            return self._change(agent_type_id, ChangeAction.REMOVE, ChangeOutcome.ALREADY_CONVERGED, group_id,
                                "membership still granted through another organization")

        removed = await self.directory.remove_membership(user_pass.user_id, object_id)
        self._stage_inactive(user_pass, row)
        if removed:
            if user_pass.memberships is not None:
                user_pass.memberships.discard(object_id)
            logger.info(f"Removed {user_pass.user_id} from group {group_id}")
            return self._change(agent_type_id, ChangeAction.REMOVE, ChangeOutcome.APPLIED, group_id)

        logger.warning(
            f"Failed to remove {user_pass.user_id} from group {group_id}; row deactivated anyway"
        )
        return self._change(agent_type_id, ChangeAction.REMOVE, ChangeOutcome.FAILED, group_id,
                            "directory remove failed")

    async def apply_migrate(self, user_pass: UserPass, row: Assignment, new_group_id: str) -> CapabilityChange:
        """
        Move an active row from its stored group to `new_group_id`.

        Removes the old membership if the user holds it and adds the new one if
        the user lacks it. An empty new group leaves the row active with no
        group, so mapping a group later migrates the user again.
        """
        old_group_id = row.group_id
        agent_type_id = row.agent_type_id
        user_id = user_pass.user_id
        problems: List[str] = []
        outcome = ChangeOutcome.APPLIED

        if old_group_id and old_group_id != new_group_id:
            old = await self.resolve_group(user_pass, old_group_id)
            if old.is_transient:
                problems.append(f"could not resolve old group {old_group_id}")
            elif old.is_found and user_pass.is_member(old.value) is not False:
                if await self.directory.remove_membership(user_id, old.value):
                    if user_pass.memberships is not None:
                        user_pass.memberships.discard(old.value)
                else:
                    problems.append(f"could not remove from old group {old_group_id}")

        if new_group_id:
            new = await self.resolve_group(user_pass, new_group_id)
            if new.is_not_found:
                outcome = ChangeOutcome.DEFERRED
                problems.append(f"new group {new_group_id} does not exist")
            elif new.is_transient:
                problems.append(f"could not resolve new group {new_group_id}")
            elif not user_pass.is_member(new.value):
                if await self.directory.add_membership(user_id, new.value):
                    if user_pass.memberships is not None:
                        user_pass.memberships.add(new.value)
                else:
                    problems.append(f"could not add to new group {new_group_id}")

        row.retarget(new_group_id)
        user_pass.stage(row)

        if problems and outcome != ChangeOutcome.DEFERRED:
            outcome = ChangeOutcome.FAILED
        if problems:
            logger.warning(f"Migration of {user_id} for agent type {agent_type_id}: {'; '.join(problems)}")
        else:
            logger.info(f"Migrated {user_id} from group {old_group_id or '-'} to {new_group_id or '-'}")
        return self._change(agent_type_id, ChangeAction.MIGRATE, outcome, new_group_id,
                            "; ".join(problems) or None)

    async def resolve_group(self, user_pass: UserPass, group_id: str) -> Lookup[str]:
        """
        Resolve a mapped group reference to its directory object id.

        Membership snapshots and mutations use object ids, while rows keep
        the reference as mapped on the agent type. Transient failures are
        not cached so a later call in the pass retries.
        """
        lookup = user_pass.groups.get(group_id)
        if lookup is None:
            lookup = await self.directory.lookup_group(group_id)
            if not lookup.is_transient:
                user_pass.groups[group_id] = lookup
        return lookup

    async def held_elsewhere(self, user_pass: UserPass, agent_type_id: UUID) -> bool:
        """True if another organization holds an active row for the same agent type."""
        rows = await self.assignments.list_active_for_user_agent_type(user_pass.user_id, agent_type_id)
        return any(r.organization_id != user_pass.organization_id for r in rows)

    # Internals

    async def _revoke_all(
        self, user_id: str, organization_id: Any, actor: Optional[str]
    ) -> ReconcileResult:
        user_id = validate_user_id(user_id)
        organization_id = coerce_uuid(organization_id, "organization id")

        result = ReconcileResult(user_id, organization_id)
        async with self.locks.hold(user_id, organization_id):
            user_pass = await self.begin_pass(user_id, organization_id, actor)
            for agent_type_id in sorted(user_pass.active_agent_type_ids(), key=str):
                result.changes.append(
                    await self.apply_remove(user_pass, user_pass.rows[agent_type_id])
                )
            await self.commit_pass(user_pass)
        return result

    async def _repair_groups(self, user_id: str, organization_id: UUID) -> List[str]:
        rows = await self.assignments.list_for_user(user_id, organization_id, active=None)
        agent_types = {
            a.id: a for a in await self.registry.get_by_ids(r.agent_type_id for r in rows)
        }

        corrected: List[Assignment] = []
        for row in rows:
            agent_type = agent_types.get(row.agent_type_id)
            if agent_type is None or not agent_type.has_group:
                continue
            if row.group_id != agent_type.group_id:
                logger.info(
                    f"Correcting group for {user_id}/{agent_type.label}: "
                    f"{row.group_id or '-'} -> {agent_type.group_id}"
                )
                row.retarget(agent_type.group_id)
                corrected.append(row)
        if corrected:
            await self.assignments.save_many(corrected)

        valid: List[str] = []
        for group_id in dict.fromkeys(r.group_id for r in rows if r.group_id):
            lookup = await self.directory.lookup_group(group_id)
            if lookup.is_found:
                valid.append(group_id)
            elif lookup.is_not_found:
                logger.warning(f"Group {group_id} referenced by {user_id} does not exist")
        return valid

    def _stage_active(self, user_pass: UserPass, agent_type_id: UUID, group_id: str) -> None:
        row = user_pass.rows.get(agent_type_id)
        if row is None:
            row = Assignment.create(
                user_id=user_pass.user_id,
                agent_type_id=agent_type_id,
                organization_id=user_pass.organization_id,
                group_id=group_id,
                assigned_by=user_pass.actor,
            )
        elif row.is_active:
            if row.group_id == group_id:
                return
            row.retarget(group_id)
        else:
            row.reactivate(group_id=group_id, assigned_by=user_pass.actor)
        user_pass.stage(row)

    def _stage_inactive(self, user_pass: UserPass, row: Assignment) -> None:
        if row.is_active:
            row.deactivate()
            user_pass.stage(row)

    def _change(
        self,
        agent_type_id: UUID,
        action: ChangeAction,
        outcome: ChangeOutcome,
        group_id: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> CapabilityChange:
        return CapabilityChange(agent_type_id, action, outcome, group_id or None, detail)

    def _log_result(self, result: ReconcileResult) -> None:
        if result.unresolved:
            logger.warning(
                f"Unresolved agent types for {result.user_id}: "
                f"{', '.join(str(c.agent_type_id) for c in result.unresolved)}"
            )
        logger.info(result.summary())
