"""
Test 2: Configuration (config.py, logging.py)

Tests ConfigLoader source merging, typed BrokerConfig sections and
validation, and logging setup.
"""

import io
import json
import logging

import pytest

from trustgate.config import (
    BrokerConfig,
    ConfigError,
    ConfigLoader,
    KeySettings,
    LockoutConfig,
    TokenSettings,
)
from trustgate.logging import configure_logging


def valid_config(**sections) -> BrokerConfig:
    base = {
        "tokens": TokenSettings(bearer_secret="x" * 40),
        "keys": KeySettings(passphrase="passphrase"),
    }
    base.update(sections)
    return BrokerConfig(**base)


# ============================================================================
# ConfigLoader
# ============================================================================

class TestConfigLoader:

    def test_empty(self):
        loader = ConfigLoader.load(use_environ=False)
        assert loader.to_dict() == {}

    def test_json_files_merge_in_order(self, tmp_path):
        (tmp_path / "10-base.json").write_text(json.dumps({"tokens": {"ttl_seconds": 600, "issuer": "a"}}))
        (tmp_path / "20-site.json").write_text(json.dumps({"tokens": {"ttl_seconds": 900}}))

        loader = ConfigLoader.load(paths=[str(tmp_path / "*.json")], use_environ=False)
        assert loader.get("tokens.ttl_seconds") == 900
        assert loader.get("tokens.issuer") == "a"

    def test_json_file_must_be_object(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("[1, 2]")
        with pytest.raises(ConfigError):
            ConfigLoader.load(paths=[str(path)], use_environ=False)

    def test_env_file(self, tmp_path):
        env = tmp_path / ".env"
        env.write_text(
            "TRUSTGATE_LOCKOUT__MAX_FAILED_ATTEMPTS=7\n"
            "TRUSTGATE_SIGNATURES__REQUIRED=true\n"
            "UNRELATED=1\n"
        )
        loader = ConfigLoader.load(env_file=str(env), use_environ=False)
        assert loader.get("lockout.max_failed_attempts") == 7
        assert loader.get("signatures.required") is True
        assert loader.get("unrelated") is None

    def test_missing_env_file_ignored(self, tmp_path):
        loader = ConfigLoader.load(env_file=str(tmp_path / "nope.env"), use_environ=False)
        assert loader.to_dict() == {}

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("TRUSTGATE_KEYS__VALID_DAYS", "30")
        monkeypatch.setenv("TRUSTGATE_MFA__ISSUER", "Acme")
        loader = ConfigLoader.load()
        assert loader.get("keys.valid_days") == 30
        assert loader.get("mfa.issuer") == "Acme"

    def test_precedence(self, tmp_path, monkeypatch):
        (tmp_path / "app.json").write_text(json.dumps({"tokens": {"ttl_seconds": 100}}))
        env = tmp_path / ".env"
        env.write_text("TRUSTGATE_TOKENS__TTL_SECONDS=200\n")
        monkeypatch.setenv("TRUSTGATE_TOKENS__TTL_SECONDS", "300")

        loader = ConfigLoader.load(paths=[str(tmp_path / "app.json")], env_file=str(env))
        assert loader.get("tokens.ttl_seconds") == 300

        loader = ConfigLoader.load(
            paths=[str(tmp_path / "app.json")],
            env_file=str(env),
            overrides={"tokens": {"ttl_seconds": 400}},
        )
        assert loader.get("tokens.ttl_seconds") == 400

    @pytest.mark.parametrize("raw,parsed", [
        ("true", True),
        ("no", False),
        ("42", 42),
        ("0.5", 0.5),
        ('["a", "b"]', ["a", "b"]),
        ("plain", "plain"),
        ("1", 1),
    ])
    def test_parse_value(self, raw, parsed):
        assert ConfigLoader()._parse_value(raw) == parsed

    def test_get_default(self):
        loader = ConfigLoader.load(overrides={"a": {"b": 1}}, use_environ=False)
        assert loader.get("a.c", "fallback") == "fallback"


# ============================================================================
# Typed sections
# ============================================================================

class TestBrokerConfig:

    def test_defaults(self):
        config = BrokerConfig()
        assert config.lockout.max_failed_attempts == 5
        assert config.tokens.ttl_seconds == 3600
        assert config.tokens.retention_days == 30
        assert config.mfa.window == 1
        assert config.mfa.backup_code_count == 10
        assert config.signatures.window_seconds == 300

    def test_from_loader(self):
        loader = ConfigLoader.load(
            overrides={
                "lockout": {"max_failed_attempts": 3},
                "tokens": {"bearer_secret": "s" * 40},
                "keys": {"passphrase": "pw", "algorithm": "EdDSA"},
            },
            use_environ=False,
        )
        config = BrokerConfig.from_loader(loader)
        assert config.lockout == LockoutConfig(max_failed_attempts=3)
        assert config.keys.algorithm == "EdDSA"
        assert config.tokens.ttl_seconds == 3600

    def test_wrong_type_rejected(self):
        loader = ConfigLoader.load(overrides={"tokens": {"ttl_seconds": "soon"}}, use_environ=False)
        with pytest.raises(ConfigError, match="tokens.ttl_seconds"):
            BrokerConfig.from_loader(loader)

    def test_bool_is_not_int(self):
        loader = ConfigLoader.load(overrides={"mfa": {"digits": True}}, use_environ=False)
        with pytest.raises(ConfigError):
            BrokerConfig.from_loader(loader)

    def test_unknown_key_rejected(self):
        loader = ConfigLoader.load(overrides={"keys": {"colour": "blue"}}, use_environ=False)
        with pytest.raises(ConfigError, match="colour"):
            BrokerConfig.from_loader(loader)

    def test_validate_ok(self):
        config = valid_config()
        assert config.validate() is config

    def test_validate_requires_secrets(self):
        with pytest.raises(ConfigError) as exc:
            BrokerConfig().validate()
        assert "keys.passphrase" in str(exc.value)
        assert "tokens.bearer_secret" in str(exc.value)

    def test_validate_short_bearer_secret(self):
        config = valid_config(tokens=TokenSettings(bearer_secret="short"))
        with pytest.raises(ConfigError, match="32 characters"):
            config.validate()

    def test_validate_limits(self):
        config = valid_config(lockout=LockoutConfig(max_failed_attempts=0))
        with pytest.raises(ConfigError, match="max_failed_attempts"):
            config.validate()

    def test_validate_algorithm(self):
        config = valid_config(keys=KeySettings(passphrase="pw", algorithm="HS256"))
        with pytest.raises(ConfigError, match="not supported"):
            config.validate()

    def test_validate_warning_window(self):
        config = valid_config(keys=KeySettings(passphrase="pw", valid_days=10, warning_days=10))
        with pytest.raises(ConfigError, match="warning_days"):
            config.validate()


# ============================================================================
# Logging
# ============================================================================

class TestLogging:

    def test_configure_logging(self):
        stream = io.StringIO()
        logger = configure_logging("DEBUG", stream=stream)
        try:
            logging.getLogger("trustgate.auth.tokens").debug("hello")
            assert "trustgate.auth.tokens - DEBUG - hello" in stream.getvalue()
        finally:
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
            logger.setLevel(logging.NOTSET)

    def test_configure_logging_replaces_handler(self):
        logger = configure_logging("INFO", stream=io.StringIO())
        configure_logging("WARNING", stream=io.StringIO())
        try:
            assert len(logger.handlers) == 1
            assert logger.level == logging.WARNING
        finally:
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
            logger.setLevel(logging.NOTSET)
