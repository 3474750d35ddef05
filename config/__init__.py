"""
Access Sync Configuration Module

Provides centralized configuration management for the agent access synchronizer.
"""

from .schema import DirectoryConfig, ReconciliationConfig, StorageConfig, SyncConfig
from .loader import create_default_config, load_config, load_config_from_file

__all__ = [
    "SyncConfig",
    "DirectoryConfig",
    "StorageConfig",
    "ReconciliationConfig",
    "load_config",
    "load_config_from_file",
    "create_default_config",
]
