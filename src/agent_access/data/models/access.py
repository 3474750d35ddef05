"""
Access Models

Agent types, organization users, and the assignment ledger that records
which agent type (and therefore which directory group) a user should hold.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, EmailStr, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserStatus(str, Enum):
    """Organization user status."""
    PENDING = "pending"  # Invited, not yet redeemed
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DELETED = "deleted"  # Soft deleted, restorable


class AgentType(BaseModel):
    """
    A grantable agent capability.

    Each agent type is backed by at most one directory security group shared
    across every organization. Users holding the agent type are members of
    that group.
    """
    id: UUID = Field(default_factory=uuid4)
    name: str
    display_name: str = ""
    description: Optional[str] = None

    # Directory group granting this agent type; empty means ungranted
    group_id: Optional[str] = None

    is_active: bool = True
    display_order: int = 0

    created_at: datetime = Field(default_factory=utcnow)
    modified_at: datetime = Field(default_factory=utcnow)

    @property
    def has_group(self) -> bool:
        return bool(self.group_id)

    @property
    def label(self) -> str:
        return self.display_name or self.name

    class Config:
        json_schema_extra = {
            "example": {
                "id": "5f0c4a5e-2b8a-4d8e-9d4c-0f5ac1f1a001",
                "name": "SalesAgent",
                "display_name": "Sales Agent",
                "group_id": "0c2a3f1e-7d4b-4f6a-a1d2-9b8c7e6f5a40",
                "is_active": True
            }
        }


class OrganizationUser(BaseModel):
    """
    A user onboarded into an organization.

    `directory_user_id` is the object id of the user in the external
    directory; it is the identity used for every membership call.
    """
    id: UUID = Field(default_factory=uuid4)
    organization_id: UUID
    directory_user_id: str
    email: EmailStr
    display_name: Optional[str] = None
    status: UserStatus = UserStatus.ACTIVE

    created_at: datetime = Field(default_factory=utcnow)
    modified_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE


class Assignment(BaseModel):
    """
    One grant of one agent type to one user within one organization.

    Rows are never hard-deleted. Revoking a grant sets `is_active` to False
    and re-granting reuses the row with `group_id` refreshed to the agent
    type's current mapping.
    """
    id: UUID = Field(default_factory=uuid4)
    user_id: str  # Directory object id
    agent_type_id: UUID
    organization_id: UUID
    group_id: str = ""

    is_active: bool = True
    assigned_at: datetime = Field(default_factory=utcnow)
    assigned_by: Optional[str] = None
    modified_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def create(
        cls,
        user_id: str,
        agent_type_id: UUID,
        organization_id: UUID,
        group_id: str,
        assigned_by: Optional[str] = None,
    ) -> "Assignment":
        return cls(
            user_id=user_id,
            agent_type_id=agent_type_id,
            organization_id=organization_id,
            group_id=group_id or "",
            assigned_by=assigned_by,
        )

    def deactivate(self) -> None:
        self.is_active = False
        self.modified_at = utcnow()

    def reactivate(self, group_id: Optional[str] = None, assigned_by: Optional[str] = None) -> None:
        self.is_active = True
        if group_id is not None:
            self.group_id = group_id
        if assigned_by:
            self.assigned_by = assigned_by
            self.assigned_at = utcnow()
        self.modified_at = utcnow()

    def retarget(self, group_id: str) -> None:
        """Point the row at a different directory group."""
        self.group_id = group_id or ""
        self.modified_at = utcnow()

    class Config:
        json_schema_extra = {
            "example": {
                "user_id": "7d1e2c3b-4a5f-4e6d-8c7b-6a5f4e3d2c1b",
                "agent_type_id": "5f0c4a5e-2b8a-4d8e-9d4c-0f5ac1f1a001",
                "organization_id": "a3b4c5d6-e7f8-4a9b-8c7d-6e5f4a3b2c1d",
                "group_id": "0c2a3f1e-7d4b-4f6a-a1d2-9b8c7e6f5a40",
                "is_active": True,
                "assigned_by": "admin@example.com"
            }
        }
