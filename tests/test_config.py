"""
Configuration Test Suite

Run with: pytest tests/test_config.py -v
"""

import pytest
import yaml

from shieldpool.aegis.config import (
    AegisConfig,
    ConfigError,
    ConfigManager,
    ConfigValidationError,
    build_json_schema,
    get_config,
    get_config_manager,
)


class TestDefaults:
    def test_defaults(self):
        config = get_config()
        assert config.accumulator.max_depth.get() == 32
        assert config.accumulator.root_history_size.get() == 30
        assert config.governance.min_stake.get() == 10000
        assert config.governance.approval_threshold.get() == 2
        assert config.governance.require_key_proof.get() is False
        assert config.pool.ragequit_delay_seconds.get() == 86400
        assert config.pool.ragequit_window_seconds.get() == 604800
        assert config.pool.max_batch_deposit.get() == 16
        assert config.observability.log_format.get() == "json"

    def test_manager_is_singleton(self):
        assert get_config_manager() is ConfigManager()
        assert get_config() is get_config_manager().config

    def test_to_yaml_roundtrips_through_loader(self):
        text = AegisConfig().to_yaml()
        data = yaml.safe_load(text)
        assert data["pool"]["ragequit_delay_seconds"] == 86400
        assert get_config_manager().check_document(data) == []


class TestEnvironment:
    def test_env_overrides_file_and_runtime(self, monkeypatch):
        mgr = get_config_manager()
        mgr.set("pool.ragequit_delay_seconds", 100)
        monkeypatch.setenv("AEGIS_RAGEQUIT_DELAY", "42")
        assert mgr.get("pool.ragequit_delay_seconds") == 42
        monkeypatch.delenv("AEGIS_RAGEQUIT_DELAY")
        assert mgr.get("pool.ragequit_delay_seconds") == 100

    def test_bool_coercion(self, monkeypatch):
        monkeypatch.setenv("AEGIS_ASP_REQUIRE_KEY_PROOF", "yes")
        assert get_config().governance.require_key_proof.get() is True
        monkeypatch.setenv("AEGIS_ASP_REQUIRE_KEY_PROOF", "off")
        assert get_config().governance.require_key_proof.get() is False

    def test_bad_env_value_reported(self, monkeypatch):
        monkeypatch.setenv("AEGIS_ASP_MIN_STAKE", "lots")
        errors = get_config_manager().validate()
        assert any(e.startswith("governance.min_stake") for e in errors)


class TestFiles:
    def test_load_yaml(self, tmp_path):
        path = tmp_path / "aegis.yaml"
        path.write_text(yaml.safe_dump({
            "governance": {"min_stake": 500, "approval_threshold": 3},
            "pool": {"ragequit_delay_seconds": 3600},
        }))

        mgr = get_config_manager()
        mgr.load_from_file(path)

        assert mgr.get("governance.min_stake") == 500
        assert mgr.get("governance.approval_threshold") == 3
        assert mgr.get("pool.ragequit_delay_seconds") == 3600
        assert mgr.get("pool.ragequit_window_seconds") == 604800

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            get_config_manager().load_from_file(tmp_path / "nope.yaml")

    def test_schema_rejects_unknown_keys_and_types(self):
        mgr = get_config_manager()
        with pytest.raises(ConfigValidationError):
            mgr.load_from_dict({"pool": {"ragequit_delay": 1}})
        with pytest.raises(ConfigValidationError):
            mgr.load_from_dict({"governance": {"min_stake": "many"}})
        with pytest.raises(ConfigValidationError):
            mgr.load_from_dict({"observability": {"audit_enabled": 1}})
        assert mgr.get("governance.min_stake") == 10000

    def test_value_validators(self):
        mgr = get_config_manager()
        with pytest.raises(ConfigValidationError):
            mgr.load_from_dict({"governance": {"approval_threshold": 0}})
        with pytest.raises(ConfigValidationError):
            mgr.set("observability.log_format", "xml")

    def test_reload_notifies_watchers(self, tmp_path):
        path = tmp_path / "aegis.yaml"
        path.write_text("pool:\n  max_batch_deposit: 4\n")
        mgr = get_config_manager()
        mgr.load_from_file(path)

        seen = []
        mgr.watch(lambda cfg: seen.append(cfg.pool.max_batch_deposit.get()))
        path.write_text("pool:\n  max_batch_deposit: 8\n")
        mgr.reload()

        assert seen == [8]


class TestDefaultFiles:
    """./aegis.yaml and ~/.aegis/config.yaml are read when the manager is built."""

    def _write(self, path, data):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(data))

    def test_project_file_loaded(self, tmp_path):
        self._write(tmp_path / "aegis.yaml", {"pool": {"ragequit_delay_seconds": 10}})
        assert get_config().pool.ragequit_delay_seconds.get() == 10

    def test_precedence(self, tmp_path, monkeypatch):
        self._write(tmp_path / "aegis.yaml", {
            "pool": {"ragequit_delay_seconds": 10, "max_batch_deposit": 4},
        })
        self._write(tmp_path / "home" / ".aegis" / "config.yaml", {
            "pool": {"ragequit_delay_seconds": 20},
        })

        mgr = get_config_manager()
        assert mgr.get("pool.ragequit_delay_seconds") == 20
        assert mgr.get("pool.max_batch_deposit") == 4
        assert mgr.get("pool.ragequit_window_seconds") == 604800

        mgr.set("pool.ragequit_delay_seconds", 30)
        assert mgr.get("pool.ragequit_delay_seconds") == 30

        monkeypatch.setenv("AEGIS_RAGEQUIT_DELAY", "40")
        assert mgr.get("pool.ragequit_delay_seconds") == 40

    def test_no_files_means_defaults(self):
        assert get_config_manager().get("pool.ragequit_delay_seconds") == 86400

    def test_invalid_default_file_rejected(self, tmp_path):
        self._write(tmp_path / "aegis.yaml", {"pool": {"ragequit_delay": 1}})
        with pytest.raises(ConfigValidationError):
            get_config_manager()


class TestRuntimeOverrides:
    def test_survive_reload(self, tmp_path):
        path = tmp_path / "extra.yaml"
        path.write_text("pool:\n  max_batch_deposit: 4\n")
        mgr = get_config_manager()
        mgr.load_from_file(path)
        mgr.set("pool.max_batch_deposit", 12)

        path.write_text("pool:\n  max_batch_deposit: 8\n")
        mgr.reload()
        assert mgr.get("pool.max_batch_deposit") == 12

        mgr.config.pool.max_batch_deposit.reset()
        assert mgr.get("pool.max_batch_deposit") == 8


class TestPaths:
    def test_invalid_paths(self):
        mgr = get_config_manager()
        with pytest.raises(ConfigError):
            mgr.get("pool.nonexistent")
        with pytest.raises(ConfigError):
            mgr.set("nowhere.value", 1)
        with pytest.raises(ConfigError):
            mgr.set("pool", 1)

    def test_schema_shape(self):
        schema = build_json_schema()
        assert schema["$schema"] == "https://json-schema.org/draft/2020-12/schema"
        pool = schema["properties"]["pool"]
        assert pool["additionalProperties"] is False
        assert pool["properties"]["ragequit_delay_seconds"]["type"] == "integer"
        assert schema["properties"]["governance"]["properties"]["require_key_proof"]["type"] == "boolean"
