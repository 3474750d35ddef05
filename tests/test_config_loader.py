"""
Tests for access-sync.yaml loading and the config schema
"""

import pytest

from config import SyncConfig, create_default_config, load_config, load_config_from_file
from config.loader import interpolate_env_vars
from config.schema import ReconciliationConfig


class TestInterpolation:

    def test_required_and_default(self, monkeypatch):
        monkeypatch.setenv("AZURE_TENANT_ID", "tenant-123")
        monkeypatch.delenv("GRAPH_BASE_URL", raising=False)

        value = interpolate_env_vars({
            "tenant": "${AZURE_TENANT_ID}",
            "urls": ["${GRAPH_BASE_URL:-https://graph.microsoft.com/v1.0}"],
            "retries": 3,
        })

        assert value == {
            "tenant": "tenant-123",
            "urls": ["https://graph.microsoft.com/v1.0"],
            "retries": 3,
        }

    def test_missing_required_variable(self, monkeypatch):
        monkeypatch.delenv("SUPABASE_KEY", raising=False)
        with pytest.raises(KeyError, match="SUPABASE_KEY"):
            interpolate_env_vars("${SUPABASE_KEY}")


class TestLoadConfig:

    def test_defaults_without_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("ACCESS_SYNC_CONFIG", raising=False)

        config = load_config()

        assert config.storage.type == "memory"
        assert config.directory.provider == "memory"
        assert config.reconciliation.bulk_success_threshold == 0.8
        assert config.reconciliation.drift_winner == "directory"

    def test_load_from_working_dir(self, tmp_path, monkeypatch):
        monkeypatch.delenv("ACCESS_SYNC_CONFIG", raising=False)
        monkeypatch.setenv("AZURE_CLIENT_SECRET", "s3cret")
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "access-sync.yaml").write_text(
            "directory:\n"
            "  provider: graph\n"
            "  tenant_id: t\n"
            "  client_id: c\n"
            "  client_secret: \"${AZURE_CLIENT_SECRET}\"\n"
            "reconciliation:\n"
            "  bulk_success_threshold: 1.0\n"
            "  drift_winner: ledger\n"
            "  max_concurrency: 8\n"
        )

        config = load_config(working_dir=tmp_path)

        assert config.directory.provider == "graph"
        assert config.directory.client_secret == "s3cret"
        assert config.reconciliation.bulk_success_threshold == 1.0
        assert not config.reconciliation.directory_wins
        assert config.reconciliation.max_concurrency == 8
        assert config.working_dir == (tmp_path / "config").absolute()

    def test_path_from_environment(self, tmp_path, monkeypatch):
        path = create_default_config(tmp_path / "custom.yaml", service_id="from-env")
        monkeypatch.setenv("ACCESS_SYNC_CONFIG", str(path))

        assert load_config().id == "from-env"

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_default_config_round_trip(self, tmp_path):
        path = create_default_config(tmp_path / "access-sync.yaml", service_id="sync-test")

        config = load_config_from_file(path)

        assert config.id == "sync-test"
        assert config.reconciliation.record_failed_grants is True
        assert config.reconciliation.max_concurrency == 5

    def test_empty_file(self, tmp_path):
        path = tmp_path / "access-sync.yaml"
        path.write_text("")

        assert load_config_from_file(path).storage.type == "memory"


class TestPolicyValidation:

    @pytest.mark.parametrize("kwargs", [
        {"bulk_success_threshold": 1.5},
        {"bulk_success_threshold": -0.1},
        {"drift_winner": "both"},
        {"max_concurrency": 0},
    ])
    def test_invalid_policy(self, kwargs):
        with pytest.raises(ValueError):
            ReconciliationConfig(**kwargs)

    def test_to_dict_masks_secrets(self):
        config = SyncConfig.from_dict({
            "directory": {"provider": "graph", "client_secret": "s3cret"},
            "storage": {"type": "supabase", "url": "https://x.supabase.co", "key": "k", "schema": "public"},
        })

        data = config.to_dict()

        assert data["directory"]["client_secret"] == "***"
        assert data["storage"]["key"] == "***"
        assert data["storage"]["schema"] == "public"
        assert data["storage"]["url"] == "https://x.supabase.co"


class TestBooleanPolicy:

    def test_interpolated_false_stays_false(self, tmp_path, monkeypatch):
        monkeypatch.delenv("RECORD_FAILED", raising=False)
        monkeypatch.setenv("REQUIRE_CAPABILITY", "no")
        path = tmp_path / "access-sync.yaml"
        path.write_text(
            "reconciliation:\n"
            "  record_failed_grants: \"${RECORD_FAILED:-false}\"\n"
            "  require_capability: \"${REQUIRE_CAPABILITY}\"\n"
        )

        config = load_config_from_file(path)

        assert config.reconciliation.record_failed_grants is False
        assert config.reconciliation.require_capability is False

    @pytest.mark.parametrize("raw, expected", [
        (True, True), (False, False), ("TRUE", True), ("1", True), ("yes", True),
        ("False", False), ("0", False), (" no ", False),
    ])
    def test_accepted_values(self, raw, expected):
        config = SyncConfig.from_dict({"reconciliation": {"require_capability": raw}})
        assert config.reconciliation.require_capability is expected

    def test_unrecognised_value_rejected(self):
        with pytest.raises(ValueError, match="record_failed_grants"):
            SyncConfig.from_dict({"reconciliation": {"record_failed_grants": "sometimes"}})
