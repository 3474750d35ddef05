"""
Base Repository

Shared storage plumbing for the access tables. Each repository talks to
Supabase when given a client and to a process-local dict otherwise.
Nothing is ever hard-deleted: assignment rows are deactivated instead.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Generic, Iterable, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel

T = TypeVar("T", bound=BaseModel)


class Repository(ABC, Generic[T]):
    """
    Abstract repository base class.

    Provides a consistent interface for data access across
    different storage backends (Supabase, in-memory, etc.)

    The in-memory backend stores copies, so an entity mutated by a caller
    is only visible to other readers once it is written back.
    """

    def __init__(self, client: Any = None):
        """
        Initialize repository.

        Args:
            client: Database client (Supabase client or None for in-memory)
        """
        self.client = client
        self._in_memory_store: dict[UUID, T] = {}

    @property
    @abstractmethod
    def table_name(self) -> str:
        """Get the database table name for this repository."""
        pass

    @property
    @abstractmethod
    def model_class(self) -> type[T]:
        """Get the Pydantic model class for this repository."""
        pass

    async def get(self, id: UUID) -> Optional[T]:
        """Get entity by ID."""
        if self.client:
            result = await self._db_get(id)
            return self.model_class(**result) if result else None
        entity = self._in_memory_store.get(id)
        return entity.model_copy() if entity else None

    async def create(self, entity: T) -> T:
        """Create a new entity."""
        if self.client:
            result = await self._db_create(entity)
            return self.model_class(**result)
        self._in_memory_store[entity.id] = entity.model_copy()
        return entity

    async def save(self, entity: T) -> T:
        """Insert or replace an entity by ID."""
        saved = await self.save_many([entity])
        return saved[0]

    async def save_many(self, entities: Iterable[T]) -> list[T]:
        """
        Insert or replace several entities in one write.

        Against Supabase this is a single upsert request, so the batch
        commits or fails as a whole.
        """
        entities = list(entities)
        if not entities:
            return []
        if self.client:
            results = await self._db_upsert(entities)
            return [self.model_class(**r) for r in results]
        for entity in entities:
            self._in_memory_store[entity.id] = entity.model_copy()
        return entities

    async def update(self, id: UUID, **updates) -> Optional[T]:
        """Update an entity."""
        if self.client:
            result = await self._db_update(id, updates)
            return self.model_class(**result) if result else None
        if id in self._in_memory_store:
            entity = self._in_memory_store[id]
            updated = entity.model_copy(update=updates)
            self._in_memory_store[id] = updated
            return updated.model_copy()
        return None

    async def list(
        self,
        filters: Optional[dict[str, Any]] = None,
        limit: int = 1000,
        offset: int = 0
    ) -> list[T]:
        """List entities with optional filters."""
        if self.client:
            results = await self._db_list(filters, limit, offset)
            return [self.model_class(**r) for r in results]

        # In-memory filtering
        entities = list(self._in_memory_store.values())
        if filters:
            entities = [
                e for e in entities
                if all(getattr(e, k, None) == v for k, v in filters.items())
            ]
        return [e.model_copy() for e in entities[offset:offset + limit]]

    # Database-specific implementations (for Supabase)
    async def _db_get(self, id: UUID) -> Optional[dict]:
        """Get from database."""
        response = self.client.table(self.table_name).select("*").eq("id", str(id)).limit(1).execute()
        return response.data[0] if response.data else None

    async def _db_create(self, entity: T) -> dict:
        """Create in database."""
        data = entity.model_dump(mode="json")
        response = self.client.table(self.table_name).insert(data).execute()
        return response.data[0]

    async def _db_upsert(self, entities: list[T]) -> list[dict]:
        """Upsert in database."""
        data = [e.model_dump(mode="json") for e in entities]
        response = self.client.table(self.table_name).upsert(data, on_conflict="id").execute()
        return response.data

    async def _db_update(self, id: UUID, updates: dict) -> Optional[dict]:
        """Update in database."""
        data = {key: _db_value(value) for key, value in updates.items()}
        response = self.client.table(self.table_name).update(data).eq("id", str(id)).execute()
        return response.data[0] if response.data else None

    async def _db_list(
        self,
        filters: Optional[dict[str, Any]],
        limit: int,
        offset: int
    ) -> list[dict]:
        """List from database."""
        query = self.client.table(self.table_name).select("*")
        if filters:
            for key, value in filters.items():
                query = query.eq(key, _db_value(value))
        query = query.range(offset, offset + limit - 1)
        response = query.execute()
        return response.data


def _db_value(value: Any) -> Any:
    """Convert a filter value to its PostgREST representation."""
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):  # Enum
        return value.value
    return value
