"""
Result types for reconciliation.

Directory lookups return a `Lookup` instead of raising for "not found", so
callers branch on the variant rather than on exception types. Engine
operations return result objects that capture per-item outcomes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Generic, List, Optional, TypeVar
from uuid import UUID

T = TypeVar("T")


class LookupStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    TRANSIENT_ERROR = "transient_error"


@dataclass(frozen=True)
class Lookup(Generic[T]):
    """Found(value) | NotFound | TransientError(reason)"""
    status: LookupStatus
    value: Optional[T] = None
    reason: Optional[str] = None

    @classmethod
    def found(cls, value: T) -> "Lookup[T]":
        return cls(LookupStatus.FOUND, value=value)

    @classmethod
    def not_found(cls, reason: Optional[str] = None) -> "Lookup[T]":
        return cls(LookupStatus.NOT_FOUND, reason=reason)

    @classmethod
    def transient(cls, reason: str) -> "Lookup[T]":
        return cls(LookupStatus.TRANSIENT_ERROR, reason=reason)

    @property
    def is_found(self) -> bool:
        return self.status == LookupStatus.FOUND

    @property
    def is_not_found(self) -> bool:
        return self.status == LookupStatus.NOT_FOUND

    @property
    def is_transient(self) -> bool:
        return self.status == LookupStatus.TRANSIENT_ERROR


class ChangeAction(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    MIGRATE = "migrate"


class ChangeOutcome(str, Enum):
    """How a single requested change ended."""
    APPLIED = "applied"                # Directory mutated and ledger updated
    ALREADY_CONVERGED = "converged"    # Nothing to do in the directory
    DEFERRED = "deferred"              # Ledger updated, directory group missing
    FAILED = "failed"                  # Directory call failed
    UNRESOLVED = "unresolved"          # Agent type or mapping missing, nothing written

    @property
    def succeeded(self) -> bool:
        return self in (ChangeOutcome.APPLIED, ChangeOutcome.ALREADY_CONVERGED)


@dataclass
class CapabilityChange:
    """Outcome of one add/remove/migrate for one agent type."""
    agent_type_id: UUID
    action: ChangeAction
    outcome: ChangeOutcome
    group_id: Optional[str] = None
    detail: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome.succeeded


@dataclass
class ReconcileResult:
    """
    Result of a single-user reconciliation pass.

    `success` is true when at least one requested change succeeded, or when
    nothing needed to change.
    """
    user_id: str
    organization_id: UUID
    changes: List[CapabilityChange] = field(default_factory=list)

    @property
    def success(self) -> bool:
        if not self.changes:
            return True
        return any(c.succeeded for c in self.changes)

    @property
    def all_succeeded(self) -> bool:
        return all(c.succeeded for c in self.changes)

    @property
    def unresolved(self) -> List[CapabilityChange]:
        """Changes that could not be resolved to a directory group."""
        return [c for c in self.changes if c.outcome == ChangeOutcome.UNRESOLVED]

    @property
    def failed(self) -> List[CapabilityChange]:
        return [c for c in self.changes if not c.succeeded]

    def summary(self) -> str:
        ok = sum(1 for c in self.changes if c.succeeded)
        return f"{ok}/{len(self.changes)} changes succeeded for user {self.user_id}"


class DriftState(str, Enum):
    """Cells of the ledger/directory matrix."""
    CONVERGED = "converged"
    MISSING_IN_DIRECTORY = "missing_in_directory"  # Active row, no membership
    MISSING_IN_LEDGER = "missing_in_ledger"        # Membership, no active row


@dataclass
class DriftFinding:
    agent_type_id: UUID
    group_id: str
    state: DriftState
    repaired: bool = False
    detail: Optional[str] = None


@dataclass
class DriftReport:
    """Result of a drift detection and repair pass for one user."""
    user_id: str
    organization_id: UUID
    findings: List[DriftFinding] = field(default_factory=list)
    corrected_groups: Dict[UUID, str] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def drift_found(self) -> bool:
        return any(f.state != DriftState.CONVERGED for f in self.findings)

    @property
    def converged(self) -> bool:
        """True when every finding is converged or has been repaired."""
        return not self.errors and all(
            f.state == DriftState.CONVERGED or f.repaired for f in self.findings
        )

    @property
    def repairs(self) -> List[DriftFinding]:
        return [f for f in self.findings if f.repaired]

    @property
    def success(self) -> bool:
        return self.converged


@dataclass
class BulkResult:
    """
    Aggregate result of an operation over many users.

    The operation succeeds when the share of users processed without error
    meets `threshold`. Users skipped by cancellation are not counted as
    processed, but a cancelled operation never reports success.
    """
    operation: str
    threshold: float
    processed: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    cancelled: bool = False
    skipped: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def record_success(self, user_id: str) -> None:
        self.processed.append(user_id)

    def record_failure(self, user_id: str, reason: str) -> None:
        self.processed.append(user_id)
        self.failures[user_id] = reason

    @property
    def total(self) -> int:
        return len(self.processed)

    @property
    def succeeded(self) -> int:
        return self.total - len(self.failures)

    @property
    def success_rate(self) -> float:
        if self.total == 0:
            return 1.0
        return self.succeeded / self.total

    @property
    def success(self) -> bool:
        if self.cancelled:
            return False
        return self.success_rate >= self.threshold

    def summary(self) -> str:
        text = (
            f"{self.operation}: {self.succeeded}/{self.total} users succeeded "
            f"({self.success_rate:.0%}, threshold {self.threshold:.0%})"
        )
        if self.cancelled:
            text += f", cancelled with {len(self.skipped)} users not processed"
        return text
