"""
Data layer for agent access synchronization.

Contains models and repositories for agent types, organization users
and the assignment ledger.
"""

from .models import AgentType, Assignment, OrganizationUser, UserStatus
from .repos import (
    AccessRepository,
    AgentTypeRepository,
    AssignmentRepository,
    OrganizationUserRepository,
)

__all__ = [
    "AgentType",
    "Assignment",
    "OrganizationUser",
    "UserStatus",
    "AccessRepository",
    "AgentTypeRepository",
    "AssignmentRepository",
    "OrganizationUserRepository",
]
