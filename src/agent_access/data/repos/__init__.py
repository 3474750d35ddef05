"""Data repositories for agent types, users and assignments."""

from .access import (
    AccessRepository,
    AgentTypeRepository,
    AssignmentRepository,
    OrganizationUserRepository,
    latest_by_agent_type,
)

__all__ = [
    "AccessRepository",
    "AgentTypeRepository",
    "AssignmentRepository",
    "OrganizationUserRepository",
    "latest_by_agent_type",
]
