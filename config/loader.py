"""
Loading of access-sync.yaml

Values may reference the environment as ${VAR} (required) or
${VAR:-default}, so credentials stay out of the file:

```yaml
directory:
  provider: graph
  tenant_id: "${AZURE_TENANT_ID}"
  client_secret: "${AZURE_CLIENT_SECRET}"
reconciliation:
  record_failed_grants: "${RECORD_FAILED_GRANTS:-true}"
```

Interpolated values are always strings; the schema converts them.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Iterator, Optional, Union

import yaml

from .schema import SyncConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "access-sync.yaml"
CONFIG_ENV_VAR = "ACCESS_SYNC_CONFIG"

ENV_REFERENCE = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")

PathLike = Union[str, Path]


def _substitute(match: "re.Match[str]") -> str:
    name, default = match.group(1), match.group(2)
    value = os.environ.get(name, default)
    if value is None:
        raise KeyError(f"Environment variable '{name}' is required by {CONFIG_FILENAME} but not set")
    return value


def interpolate_env_vars(value: Any) -> Any:
    """
    Replace ${VAR} references in every string of a parsed YAML tree.

    Raises:
        KeyError: a referenced variable without default is not set
    """
    if isinstance(value, str):
        return ENV_REFERENCE.sub(_substitute, value)
    if isinstance(value, dict):
        return {key: interpolate_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [interpolate_env_vars(item) for item in value]
    return value


def load_config_from_file(config_path: PathLike) -> SyncConfig:
    """
    Raises:
        FileNotFoundError: no file at config_path
        KeyError: a required environment variable is not set
        ValueError: a policy value is out of range or not a boolean
        yaml.YAMLError: the file is not valid YAML
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from {config_path}")
    raw = yaml.safe_load(config_path.read_text()) or {}
    raw = interpolate_env_vars(raw)
    raw.setdefault("working_dir", str(config_path.parent.absolute()))
    return SyncConfig.from_dict(raw)


def _candidates(working_dir: Optional[Path]) -> Iterator[Path]:
    for base in filter(None, (working_dir, Path.cwd())):
        yield base / CONFIG_FILENAME
        yield base / "config" / CONFIG_FILENAME


def load_config(
    config_path: Optional[PathLike] = None,
    working_dir: Optional[PathLike] = None,
) -> SyncConfig:
    """
    Load access-sync.yaml, falling back to an all-in-memory default.

    An explicit path wins, then $ACCESS_SYNC_CONFIG, then access-sync.yaml
    in working_dir or the current directory (directly or under config/).
    """
    config_path = config_path or os.environ.get(CONFIG_ENV_VAR)
    if config_path:
        return load_config_from_file(config_path)

    working_dir = Path(working_dir) if working_dir else None
    for path in _candidates(working_dir):
        if path.exists():
            return load_config_from_file(path)

    logger.info(f"No {CONFIG_FILENAME} found, using in-memory storage and directory")
    return SyncConfig(working_dir=working_dir or Path.cwd())


def create_default_config(
    output_path: Optional[PathLike] = None,
    service_id: str = "access-sync",
) -> Path:
    """
    Write a commented access-sync.yaml using the in-memory backends.

    Returns:
        The path written
    """
    output_path = Path(output_path) if output_path else Path(CONFIG_FILENAME)

    default_config = f"""# Agent Access Sync Configuration
# Environment variables can be used: ${{VAR_NAME}} or ${{VAR_NAME:-default}}

service:
  id: "{service_id}"
  name: "Agent Access Sync"

# External directory (memory | graph)
directory:
  provider: "memory"
  # provider: "graph"
  # tenant_id: "${{AZURE_TENANT_ID}}"
  # client_id: "${{AZURE_CLIENT_ID}}"
  # client_secret: "${{AZURE_CLIENT_SECRET}}"
  timeout_seconds: 30
  max_retries: 3

# Assignment store (memory | supabase)
storage:
  type: "memory"
  # type: "supabase"
  # url: "${{SUPABASE_URL}}"
  # key: "${{SUPABASE_KEY}}"

# Reconciliation policy
reconciliation:
  bulk_success_threshold: 0.8
  drift_winner: "directory"   # or "ledger"
  max_concurrency: 5
  require_capability: false
  record_failed_grants: true
"""

    output_path.write_text(default_config)

    logger.info(f"Created default configuration at {output_path}")
    return output_path
