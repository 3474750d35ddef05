"""
Operation Status Reporter

Keeps progress history for long-running operations (bulk grants, organization
syncs) and notifies listeners. Purely observational: the engine never
depends on a listener succeeding.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

logger = logging.getLogger(__name__)


@dataclass
class OperationStatus:
    """State of one tracked operation"""
    operation_id: str
    operation_type: str
    description: str
    phase: str = "starting"
    detail: Optional[str] = None
    is_completed: bool = False
    is_success: bool = False
    summary: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    history: List[str] = field(default_factory=list)

    @property
    def duration_ms(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "operation_type": self.operation_type,
            "description": self.description,
            "phase": self.phase,
            "detail": self.detail,
            "is_completed": self.is_completed,
            "is_success": self.is_success,
            "summary": self.summary,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "history": list(self.history),
        }


@dataclass
class StatusEvent:
    operation_id: str
    phase: str
    detail: Optional[str] = None
    is_completed: bool = False
    is_success: bool = False


StatusListener = Callable[[StatusEvent], Any]


class OperationStatusReporter:
    """
    In-memory operation tracker.

    Example:
        reporter = OperationStatusReporter()
        reporter.subscribe(lambda event: print(event.phase, event.detail))

        op_id = await reporter.start("grant_all", "Grant Sales to org 42")
        await reporter.update(op_id, "processing", "10/50 users")
        await reporter.complete(op_id, True, "50/50 users succeeded")
    """

    def __init__(self, max_operations: int = 500):
        self._operations: Dict[str, OperationStatus] = {}
        self._listeners: List[StatusListener] = []
        self._max_operations = max_operations

    def subscribe(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: StatusListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def start(
        self,
        operation_type: str,
        description: str,
        operation_id: Optional[str] = None,
    ) -> str:
        operation_id = operation_id or f"{operation_type}-{uuid4().hex[:12]}"
        status = OperationStatus(
            operation_id=operation_id,
            operation_type=operation_type,
            description=description,
        )
        status.history.append(f"{_stamp()} - Starting operation: {description}")
        self._operations[operation_id] = status
        self._evict()

        logger.info(f"Started operation {operation_id} - {operation_type}: {description}")
        await self._notify(StatusEvent(operation_id, "starting", description))
        return operation_id

    async def update(self, operation_id: str, phase: str, detail: Optional[str] = None) -> None:
        status = self._operations.get(operation_id)
        if status is None:
            logger.debug(f"Status update for unknown operation {operation_id}")
            return

        status.phase = phase
        status.detail = detail
        entry = f"{_stamp()} - {phase}"
        if detail:
            entry += f": {detail}"
        status.history.append(entry)

        logger.debug(f"Operation {operation_id}: {phase} {detail or ''}")
        await self._notify(StatusEvent(operation_id, phase, detail))

    async def complete(self, operation_id: str, success: bool, summary: Optional[str] = None) -> None:
        status = self._operations.get(operation_id)
        if status is None:
            logger.debug(f"Completion for unknown operation {operation_id}")
            return

        status.is_completed = True
        status.is_success = success
        status.summary = summary
        status.finished_at = datetime.now(timezone.utc)
        status.phase = "completed" if success else "failed"
        entry = f"{_stamp()} - {'Completed successfully' if success else 'Failed'}"
        if summary:
            entry += f": {summary}"
        status.history.append(entry)

        logger.info(
            f"Completed operation {operation_id} - success={success}, "
            f"duration={status.duration_ms:.0f}ms, result={summary or ''}"
        )
        await self._notify(StatusEvent(
            operation_id, status.phase, summary, is_completed=True, is_success=success
        ))

    def get(self, operation_id: str) -> Optional[OperationStatus]:
        return self._operations.get(operation_id)

    def list_active(self) -> List[OperationStatus]:
        return [s for s in self._operations.values() if not s.is_completed]

    async def _notify(self, event: StatusEvent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Status listener failed for {event.operation_id}: {e}")

    def _evict(self) -> None:
        """Drop the oldest completed operations beyond the retention limit."""
        overflow = len(self._operations) - self._max_operations
        if overflow <= 0:
            return
        completed = [s for s in self._operations.values() if s.is_completed]
        completed.sort(key=lambda s: s.started_at)
        for status in completed[:overflow]:
            del self._operations[status.operation_id]


def _stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
