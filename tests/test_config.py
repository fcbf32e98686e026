"""Configuration layer tests."""

import pytest
import yaml

from voidledger.addressing import DEFAULT_PROGRAM_ID
from voidledger.config import (
    ConfigError,
    ConfigManager,
    ConfigValidationError,
    ConfigValue,
    VoidLedgerConfig,
    get_config,
    get_config_manager,
)


class TestConfigValue:

    def test_default_then_set(self):
        value = ConfigValue(default=5, validator=lambda x: x > 0)
        assert value.get() == 5
        value.set(7)
        assert value.get() == 7
        value.reset()
        assert value.get() == 5

    def test_validator(self):
        value = ConfigValue(default=5, validator=lambda x: x > 0)
        with pytest.raises(ConfigValidationError):
            value.set(0)

    def test_env_wins(self, monkeypatch):
        value = ConfigValue(default=1.0, env_var="VOIDLEDGER_TEST_TIMEOUT")
        value.set(2.0)
        monkeypatch.setenv("VOIDLEDGER_TEST_TIMEOUT", "3.5")
        assert value.get() == 3.5

    def test_bool_coercion(self, monkeypatch):
        value = ConfigValue(default=True, env_var="VOIDLEDGER_TEST_FLAG")
        monkeypatch.setenv("VOIDLEDGER_TEST_FLAG", "off")
        assert value.get() is False

    def test_change_callback(self):
        seen = []
        value = ConfigValue(default="a")
        value.on_change(lambda old, new: seen.append((old, new)))
        value.set("b")
        assert seen == [(None, "b")]


class TestConfigManager:

    def test_singleton(self):
        assert get_config_manager() is ConfigManager()
        assert get_config() is ConfigManager().config

    def test_reset(self):
        ConfigManager().set("store.lock_timeout_seconds", 1.5)
        ConfigManager.reset()
        assert ConfigManager().get("store.lock_timeout_seconds") == 5.0

    def test_defaults(self):
        mgr = ConfigManager()
        assert mgr.get("ledger.program_id") == DEFAULT_PROGRAM_ID
        assert mgr.get("observability.log_format") == "json"
        assert mgr.validate() == []

    def test_section_get(self):
        assert ConfigManager().get("security") == {
            "nonce_ttl_seconds": 300,
            "signature_max_age_seconds": 120,
        }

    def test_load_file(self, tmp_path):
        path = tmp_path / "voidledger.yaml"
        path.write_text(yaml.safe_dump({
            "store": {"lock_timeout_seconds": 0.5},
            "observability": {"log_level": "debug", "log_format": "text"},
        }))
        mgr = ConfigManager()
        mgr.load_from_file(path)
        assert mgr.get("store.lock_timeout_seconds") == 0.5
        assert mgr.get("observability.log_level") == "debug"
        assert mgr.loaded_files == [path]

    def test_unknown_key(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("store:\n  lock_timeout: 1\n")
        with pytest.raises(ConfigError, match="store.lock_timeout"):
            ConfigManager().load_from_file(path)

    def test_invalid_value_in_file(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("ledger:\n  program_id: not-an-address\n")
        with pytest.raises(ConfigValidationError):
            ConfigManager().load_from_file(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            ConfigManager().load_from_file(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("store: [unclosed\n")
        with pytest.raises(ConfigError):
            ConfigManager().load_from_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            ConfigManager().load_from_file(tmp_path / "absent.yaml")

    def test_load_defaults_from_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path / "home"))
        (tmp_path / "voidledger.yaml").write_text("security:\n  nonce_ttl_seconds: 60\n")
        loaded = ConfigManager().load_defaults()
        assert [p.name for p in loaded] == ["voidledger.yaml"]
        assert ConfigManager().get("security.nonce_ttl_seconds") == 60

    def test_env_override_reported_by_validate(self, monkeypatch):
        monkeypatch.setenv("VOIDLEDGER_LOG_LEVEL", "chatty")
        problems = ConfigManager().validate()
        assert len(problems) == 1
        assert problems[0].startswith("observability.log_level")

    def test_bad_path(self):
        with pytest.raises(ConfigError):
            ConfigManager().get("store.nope")
        with pytest.raises(ConfigError):
            ConfigManager().set("store", 1)

    def test_schema_documents_env_vars(self):
        schema = ConfigManager().export_schema()
        timeout = schema["properties"]["store"]["lock_timeout_seconds"]
        assert timeout["env_var"] == "VOIDLEDGER_LOCK_TIMEOUT"
        assert timeout["type"] == "float"

    def test_yaml_dump(self):
        data = yaml.safe_load(VoidLedgerConfig().to_yaml())
        assert data["ledger"]["state_path"] == "voidledger-state.json"
        assert data["observability"]["audit_enabled"] is True
