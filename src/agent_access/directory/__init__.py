"""
Directory clients

The engine talks to the external directory only through DirectoryClient.
"""

from .base import DirectoryClient
from .graph import GraphDirectoryClient
from .guarded import GuardedDirectory
from .memory import InMemoryDirectory

__all__ = [
    "DirectoryClient",
    "GraphDirectoryClient",
    "GuardedDirectory",
    "InMemoryDirectory",
]
