"""Data models for agent types, organization users and assignments."""

from .access import (
    AgentType,
    Assignment,
    OrganizationUser,
    UserStatus,
)

__all__ = [
    "AgentType",
    "Assignment",
    "OrganizationUser",
    "UserStatus",
]
