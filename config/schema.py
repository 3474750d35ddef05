"""
Access Sync Configuration Schema

Defines the configuration structure for the agent access synchronizer.
All configuration can be specified via access-sync.yaml or environment variables.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from pathlib import Path

DRIFT_WINNERS = ("directory", "ledger")


@dataclass
class DirectoryConfig:
    """Configuration for the external directory"""
    provider: str = "memory"  # "memory" or "graph"
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    base_url: str = "https://graph.microsoft.com/v1.0"
    timeout_seconds: float = 30.0
    max_retries: int = 3
    retry_backoff_seconds: float = 1.0


@dataclass
class StorageConfig:
    """Configuration for the assignment store"""
    type: str = "memory"  # "memory" or "supabase"
    url: Optional[str] = None
    key: Optional[str] = None
    # Additional storage options
    metadata: Dict[str, Any] = field(default_factory=dict)


TRUE_VALUES = {"true", "1", "yes", "on"}
FALSE_VALUES = {"false", "0", "no", "off"}


def parse_bool(value: Any, name: str) -> bool:
    """
    Read a YAML boolean that may arrive as a string after env interpolation.

    Raises:
        ValueError: for anything that is not a recognisable boolean
    """
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got '{value}'")


@dataclass
class ReconciliationConfig:
    """
    Policy knobs for the reconciliation engine.

    bulk_success_threshold:
        Share of users that must succeed for a bulk operation to be
        reported successful. 1.0 means zero tolerance.
    drift_winner:
        Who wins when a user is in a group but has no active assignment row.
        "directory" records the membership in the ledger (and logs a sync
        anomaly); "ledger" removes the undocumented membership.
    max_concurrency:
        Users processed in parallel by bulk operations.
    require_capability:
        Reject a desired set that is empty.
    record_failed_grants:
        When a directory add fails, still write the active row so a later
        drift repair retries the membership.
    """
    bulk_success_threshold: float = 0.8
    drift_winner: str = "directory"
    max_concurrency: int = 5
    require_capability: bool = False
    record_failed_grants: bool = True
    directory_call_timeout_seconds: float = 60.0
    system_actor: str = "system:access-sync"

    def __post_init__(self):
        if not 0.0 <= self.bulk_success_threshold <= 1.0:
            raise ValueError(
                f"bulk_success_threshold must be between 0 and 1, got {self.bulk_success_threshold}"
            )
        if self.drift_winner not in DRIFT_WINNERS:
            raise ValueError(
                f"drift_winner must be one of {DRIFT_WINNERS}, got '{self.drift_winner}'"
            )
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {self.max_concurrency}")

    @property
    def directory_wins(self) -> bool:
        return self.drift_winner == "directory"


@dataclass
class SyncConfig:
    """
    Central configuration for the access synchronizer.

    This configuration can be loaded from:
    - access-sync.yaml (primary)
    - Environment variables (interpolated into the YAML)
    - Programmatic defaults

    Example access-sync.yaml:
    ```yaml
    service:
      id: "access-sync"
      name: "Agent Access Sync"

    directory:
      provider: graph
      tenant_id: "${AZURE_TENANT_ID}"
      client_id: "${AZURE_CLIENT_ID}"
      client_secret: "${AZURE_CLIENT_SECRET}"

    storage:
      type: supabase
      url: "${SUPABASE_URL}"
      key: "${SUPABASE_KEY}"

    reconciliation:
      bulk_success_threshold: 0.8
      drift_winner: directory
      max_concurrency: 5
    ```
    """
    # Service identity
    id: str = "access-sync"
    name: str = "Agent Access Sync"
    version: str = "0.1.0"

    directory: DirectoryConfig = field(default_factory=DirectoryConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)

    # Working directory (defaults to current directory)
    working_dir: Path = field(default_factory=Path.cwd)

    # Additional metadata
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncConfig":
        """Create SyncConfig from dictionary (e.g., parsed YAML)"""
        service_data = data.get("service", {})

        directory_data = data.get("directory", {})
        directory_config = DirectoryConfig(
            provider=directory_data.get("provider", "memory"),
            tenant_id=directory_data.get("tenant_id"),
            client_id=directory_data.get("client_id"),
            client_secret=directory_data.get("client_secret"),
            base_url=directory_data.get("base_url", "https://graph.microsoft.com/v1.0"),
            timeout_seconds=float(directory_data.get("timeout_seconds", 30.0)),
            max_retries=int(directory_data.get("max_retries", 3)),
            retry_backoff_seconds=float(directory_data.get("retry_backoff_seconds", 1.0)),
        )

        storage_data = data.get("storage", {})
        storage_config = StorageConfig(
            type=storage_data.get("type", "memory"),
            url=storage_data.get("url"),
            key=storage_data.get("key"),
            metadata={k: v for k, v in storage_data.items()
                     if k not in ("type", "url", "key")}
        )

        recon_data = data.get("reconciliation", {})
        reconciliation_config = ReconciliationConfig(
            bulk_success_threshold=float(recon_data.get("bulk_success_threshold", 0.8)),
            drift_winner=recon_data.get("drift_winner", "directory"),
            max_concurrency=int(recon_data.get("max_concurrency", 5)),
            require_capability=parse_bool(recon_data.get("require_capability", False), "require_capability"),
            record_failed_grants=parse_bool(
                recon_data.get("record_failed_grants", True), "record_failed_grants"
            ),
            directory_call_timeout_seconds=float(
                recon_data.get("directory_call_timeout_seconds", 60.0)
            ),
            system_actor=recon_data.get("system_actor", "system:access-sync"),
        )

        return cls(
            id=service_data.get("id", "access-sync"),
            name=service_data.get("name", "Agent Access Sync"),
            version=service_data.get("version", "0.1.0"),
            directory=directory_config,
            storage=storage_config,
            reconciliation=reconciliation_config,
            working_dir=Path(data.get("working_dir", ".")),
            metadata=data.get("metadata", {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (secrets are masked)"""
        return {
            "service": {
                "id": self.id,
                "name": self.name,
                "version": self.version,
            },
            "directory": {
                "provider": self.directory.provider,
                "tenant_id": self.directory.tenant_id,
                "client_id": self.directory.client_id,
                "client_secret": "***" if self.directory.client_secret else None,
                "base_url": self.directory.base_url,
                "timeout_seconds": self.directory.timeout_seconds,
                "max_retries": self.directory.max_retries,
                "retry_backoff_seconds": self.directory.retry_backoff_seconds,
            },
            "storage": {
                "type": self.storage.type,
                "url": self.storage.url,
                "key": "***" if self.storage.key else None,
                **self.storage.metadata,
            },
            "reconciliation": {
                "bulk_success_threshold": self.reconciliation.bulk_success_threshold,
                "drift_winner": self.reconciliation.drift_winner,
                "max_concurrency": self.reconciliation.max_concurrency,
                "require_capability": self.reconciliation.require_capability,
                "record_failed_grants": self.reconciliation.record_failed_grants,
                "directory_call_timeout_seconds": self.reconciliation.directory_call_timeout_seconds,
                "system_actor": self.reconciliation.system_actor,
            },
            "working_dir": str(self.working_dir),
            "metadata": self.metadata,
        }
