"""
Engine bootstrap

Builds a ReconciliationEngine from a SyncConfig: the Supabase client or the
in-memory store, the Graph or in-memory directory, and the timeout guard
around it.
"""

import logging
from typing import Any, Optional

from config.schema import DirectoryConfig, StorageConfig, SyncConfig

from .data.repos.access import AccessRepository
from .directory.base import DirectoryClient
from .directory.graph import GraphDirectoryClient
from .directory.guarded import GuardedDirectory
from .directory.memory import InMemoryDirectory
from .engine import ReconciliationEngine

logger = logging.getLogger(__name__)


def create_storage_client(config: StorageConfig) -> Optional[Any]:
    """
    Create the Supabase client, or None for the in-memory store.

    Raises:
        ValueError: if supabase storage is selected without url and key
    """
    if config.type == "memory":
        logger.info("Using in-memory assignment store")
        return None
    if config.type != "supabase":
        raise ValueError(f"Unknown storage type '{config.type}'")
    if not config.url or not config.key:
        raise ValueError("Supabase storage requires storage.url and storage.key")

    from supabase import create_client

    client = create_client(config.url, config.key)
    logger.info(f"Supabase client initialized for {config.url}")
    return client


def create_directory(config: DirectoryConfig) -> DirectoryClient:
    """
    Raises:
        ValueError: unknown provider or missing Graph credentials
    """
    if config.provider == "memory":
        logger.info("Using in-memory directory")
        return InMemoryDirectory()
    if config.provider != "graph":
        raise ValueError(f"Unknown directory provider '{config.provider}'")

    missing = [
        name for name in ("tenant_id", "client_id", "client_secret")
        if not getattr(config, name)
    ]
    if missing:
        raise ValueError(f"Graph directory requires {', '.join(missing)}")

    logger.info(f"Using Microsoft Graph directory at {config.base_url}")
    return GraphDirectoryClient.from_config(config)


def build_engine(
    config: SyncConfig,
    storage_client: Optional[Any] = None,
    directory: Optional[DirectoryClient] = None,
) -> ReconciliationEngine:
    """Wire an engine from configuration; explicit collaborators take precedence."""
    if storage_client is None:
        storage_client = create_storage_client(config.storage)
    if directory is None:
        directory = create_directory(config.directory)

    guarded = GuardedDirectory(
        directory, timeout=config.reconciliation.directory_call_timeout_seconds
    )
    engine = ReconciliationEngine(
        AccessRepository(storage_client),
        guarded,
        policy=config.reconciliation,
    )
    logger.info(
        f"Engine ready: storage={config.storage.type}, directory={config.directory.provider}, "
        f"threshold={config.reconciliation.bulk_success_threshold:.0%}, "
        f"drift_winner={config.reconciliation.drift_winner}"
    )
    return engine
