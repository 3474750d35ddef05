"""
Agent Type Registry

CRUD and lookup for agent types. Changing an agent type's directory group or
disabling it emits an event; the reconciliation engine subscribes to those
events and propagates the change to every affected user. The registry holds
no reference to the engine.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional
from uuid import UUID

from ..data.models.access import AgentType, utcnow
from ..data.repos.access import AgentTypeRepository
from .errors import AgentTypeNotFoundError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroupMappingChanged:
    """An agent type now maps to a different directory group."""
    agent_type_id: UUID
    old_group_id: Optional[str]
    new_group_id: Optional[str]
    changed_by: Optional[str] = None


@dataclass(frozen=True)
class AgentTypeDisabled:
    """An agent type was switched off; every holder must lose it."""
    agent_type_id: UUID
    group_id: Optional[str]
    changed_by: Optional[str] = None


AgentTypeEvent = Any  # GroupMappingChanged | AgentTypeDisabled
AgentTypeListener = Callable[[AgentTypeEvent], Any]


class AgentTypeRegistry:
    """
    Registry of agent types backed by AgentTypeRepository.

    Listeners run after the agent type change is stored. A failing listener
    is logged and does not undo the change.
    """

    def __init__(self, repository: AgentTypeRepository):
        self.repository = repository
        self._listeners: List[AgentTypeListener] = []

    def subscribe(self, listener: AgentTypeListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: AgentTypeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # Queries

    async def get_by_id(self, agent_type_id: UUID) -> Optional[AgentType]:
        return await self.repository.get(agent_type_id)

    async def get_by_ids(self, agent_type_ids: Iterable[UUID]) -> List[AgentType]:
        return await self.repository.get_by_ids(agent_type_ids)

    async def list_active(self, with_group_only: bool = False) -> List[AgentType]:
        return await self.repository.list_active(with_group_only=with_group_only)

    # Mutations

    async def create(self, agent_type: AgentType) -> AgentType:
        if not agent_type.name.strip():
            raise ValidationError("Agent type name is required")
        existing = await self.repository.get_by_name(agent_type.name)
        if existing is not None:
            raise ValidationError(f"Agent type '{agent_type.name}' already exists")

        created = await self.repository.create(agent_type)
        logger.info(f"Created agent type {created.name} ({created.id}) -> group {created.group_id or '-'}")
        return created

    async def update(self, agent_type: AgentType, changed_by: Optional[str] = None) -> AgentType:
        """
        Store a modified agent type and emit events for group or state changes.

        Raises:
            AgentTypeNotFoundError: if the agent type does not exist
        """
        existing = await self.repository.get(agent_type.id)
        if existing is None:
            raise AgentTypeNotFoundError(agent_type.id)

        agent_type.group_id = agent_type.group_id or None
        agent_type.modified_at = utcnow()
        saved = await self.repository.save(agent_type)

        events: List[AgentTypeEvent] = []
        if existing.is_active and not saved.is_active:
            events.append(AgentTypeDisabled(saved.id, existing.group_id, changed_by))
        elif saved.is_active and (existing.group_id or None) != saved.group_id:
            events.append(GroupMappingChanged(saved.id, existing.group_id, saved.group_id, changed_by))

        logger.info(f"Updated agent type {saved.name} ({saved.id})")
        for event in events:
            await self._emit(event)
        return saved

    async def change_group(
        self, agent_type_id: UUID, group_id: Optional[str], changed_by: Optional[str] = None
    ) -> AgentType:
        agent_type = await self.repository.get(agent_type_id)
        if agent_type is None:
            raise AgentTypeNotFoundError(agent_type_id)
        agent_type.group_id = group_id
        return await self.update(agent_type, changed_by)

    async def disable(self, agent_type_id: UUID, changed_by: Optional[str] = None) -> AgentType:
        """Soft delete: mark inactive and cascade the revoke to every holder."""
        agent_type = await self.repository.get(agent_type_id)
        if agent_type is None:
            raise AgentTypeNotFoundError(agent_type_id)
        agent_type.is_active = False
        return await self.update(agent_type, changed_by)

    async def _emit(self, event: AgentTypeEvent) -> None:
        logger.info(f"Agent type event: {event}")
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Agent type listener failed for {event}")
