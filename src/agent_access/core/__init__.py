"""
Agent Access Core

Reconciliation of agent type assignments with directory group membership.
"""

from .errors import AccessSyncError, AgentTypeNotFoundError, DirectoryError, ValidationError
from .results import (
    BulkResult,
    CapabilityChange,
    ChangeAction,
    ChangeOutcome,
    DriftFinding,
    DriftReport,
    DriftState,
    Lookup,
    LookupStatus,
    ReconcileResult,
)
from .locks import UserLockRegistry
from .status import OperationStatus, OperationStatusReporter, StatusEvent
from .agent_types import AgentTypeDisabled, AgentTypeRegistry, GroupMappingChanged
from .reconciler import MembershipReconciler, UserPass
from .drift import DriftRepairer
from .propagation import BulkPropagator

__all__ = [
    # Errors
    "AccessSyncError",
    "AgentTypeNotFoundError",
    "DirectoryError",
    "ValidationError",
    # Results
    "BulkResult",
    "CapabilityChange",
    "ChangeAction",
    "ChangeOutcome",
    "DriftFinding",
    "DriftReport",
    "DriftState",
    "Lookup",
    "LookupStatus",
    "ReconcileResult",
    # Registry
    "AgentTypeRegistry",
    "AgentTypeDisabled",
    "GroupMappingChanged",
    # Engine parts
    "MembershipReconciler",
    "UserPass",
    "DriftRepairer",
    "BulkPropagator",
    "UserLockRegistry",
    # Status
    "OperationStatus",
    "OperationStatusReporter",
    "StatusEvent",
]
