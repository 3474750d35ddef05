"""
Agent Access Sync

Keeps agent type assignments in the local ledger and security group
memberships in the external directory convergent.
"""

__version__ = "0.1.0"

from .engine import ReconciliationEngine
from .bootstrap import build_engine

__all__ = ["ReconciliationEngine", "build_engine", "__version__"]
