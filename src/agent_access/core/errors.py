"""Exceptions raised by the access synchronization engine."""


class AccessSyncError(Exception):
    """Base class for engine errors."""


class ValidationError(AccessSyncError):
    """Request rejected before any mutation was attempted."""


class AgentTypeNotFoundError(AccessSyncError):
    """Referenced agent type does not exist."""

    def __init__(self, agent_type_id):
        super().__init__(f"Agent type not found: {agent_type_id}")
        self.agent_type_id = agent_type_id


class DirectoryError(AccessSyncError):
    """Directory could not answer a query (network, throttling, auth)."""
