"""
Test 4: Config system (config.py)

Tests ConfigLoader layering (files, .env, environment, overrides) and
StowageConfig validation.
"""

import json

import pytest

from stowage.config import ConfigError, ConfigLoader, StowageConfig, load_config
from stowage.policy import UploadPolicy


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    import os
    for key in list(os.environ):
        if key.startswith("STOWAGE_"):
            monkeypatch.delenv(key)


# ============================================================================
# StowageConfig
# ============================================================================

class TestStowageConfig:

    def test_defaults(self):
        config = StowageConfig()
        assert config.store_backend == "redis"
        assert config.ttl_seconds == 3600
        assert config.key_mode == "hash"
        assert config.policies == {}

    def test_ttl_must_be_positive(self):
        with pytest.raises(ConfigError, match="ttl_seconds"):
            StowageConfig(ttl_seconds=0)

    def test_unknown_backend(self):
        with pytest.raises(ConfigError, match="Unknown store backend"):
            StowageConfig(store_backend="s3")


# ============================================================================
# ConfigLoader
# ============================================================================

class TestConfigLoader:

    def test_json_file(self, tmp_path):
        path = tmp_path / "stowage.json"
        path.write_text(json.dumps({"store_backend": "memory", "ttl_seconds": 60}))

        config = ConfigLoader.load(paths=[str(path)]).get_stowage_config()
        assert config.store_backend == "memory"
        assert config.ttl_seconds == 60

    def test_yaml_file_with_policies(self, tmp_path):
        path = tmp_path / "stowage.yaml"
        path.write_text(
            "store_backend: memory\n"
            "policies:\n"
            "  avatar:\n"
            "    enabledFields:\n"
            "      - field: avatar\n"
            "        mimetypes: [\"image/\"]\n"
            "        limits: {files: 1}\n"
        )

        loader = ConfigLoader.load(paths=[str(path)])
        policy = loader.get_policy("avatar")
        assert isinstance(policy, UploadPolicy)
        assert policy.resolve().rule_for("avatar").mimetypes == ("image/",)

    def test_later_files_override_earlier(self, tmp_path):
        (tmp_path / "a.json").write_text(json.dumps({"ttl_seconds": 10, "key_prefix": "a:"}))
        (tmp_path / "b.json").write_text(json.dumps({"ttl_seconds": 20}))

        config = ConfigLoader.load(paths=[str(tmp_path / "*.json")]).get_stowage_config()
        assert config.ttl_seconds == 20
        assert config.key_prefix == "a:"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            ConfigLoader.load(paths=[str(tmp_path / "nope.yaml")])

    def test_unsupported_file_type(self, tmp_path):
        path = tmp_path / "stowage.toml"
        path.write_text("x = 1")
        with pytest.raises(ConfigError, match="Unsupported config file type"):
            ConfigLoader.load(paths=[str(path)])

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "stowage.json"
        path.write_text(json.dumps({"ttl_seconds": 10}))
        monkeypatch.setenv("STOWAGE_TTL_SECONDS", "99")

        config = ConfigLoader.load(paths=[str(path)]).get_stowage_config()
        assert config.ttl_seconds == 99

    def test_env_nested_keys(self, monkeypatch):
        monkeypatch.setenv("STOWAGE_POLICIES__DOCS__MIMETYPES", '["application/pdf"]')
        monkeypatch.setenv("STOWAGE_POLICIES__DOCS__ENABLEDADDITIONALFIELDS", "true")

        loader = ConfigLoader.load()
        assert loader.get("policies.docs.mimetypes") == ["application/pdf"]
        assert loader.get("policies.docs.enabledadditionalfields") is True

    def test_env_file(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("STOWAGE_STORE_BACKEND=memory\nSTOWAGE_FETCH_TIMEOUT=2.5\nOTHER=1\n")

        loader = ConfigLoader.load(env_file=str(env_file))
        config = loader.get_stowage_config()
        assert config.store_backend == "memory"
        assert config.fetch_timeout == 2.5
        assert "other" not in loader.to_dict()

    def test_environment_beats_env_file(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("STOWAGE_KEY_MODE=token\n")
        monkeypatch.setenv("STOWAGE_KEY_MODE", "hash")

        config = ConfigLoader.load(env_file=str(env_file)).get_stowage_config()
        assert config.key_mode == "hash"

    def test_missing_env_file_is_ignored(self, tmp_path):
        loader = ConfigLoader.load(env_file=str(tmp_path / "missing.env"))
        assert loader.to_dict() == {}

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("STOWAGE_TTL_SECONDS", "99")
        config = load_config(overrides={"ttl_seconds": 5})
        assert config.ttl_seconds == 5

    def test_int_accepted_for_float(self):
        config = load_config(overrides={"fetch_timeout": 3})
        assert config.fetch_timeout == 3.0

    def test_type_mismatch(self):
        with pytest.raises(ConfigError, match="redis_max_connections"):
            load_config(overrides={"redis_max_connections": "many"})

    def test_bool_is_not_int(self):
        with pytest.raises(ConfigError):
            load_config(overrides={"ttl_seconds": True})

    def test_unknown_policy(self):
        with pytest.raises(ConfigError, match="not configured"):
            ConfigLoader.load().get_policy("missing")


class TestParseValue:

    def test_values(self):
        loader = ConfigLoader()
        assert loader._parse_value("yes") is True
        assert loader._parse_value("False") is False
        assert loader._parse_value("42") == 42
        assert loader._parse_value("0.5") == 0.5
        assert loader._parse_value('{"a": 1}') == {"a": 1}
        assert loader._parse_value("redis://host:6379/0") == "redis://host:6379/0"
