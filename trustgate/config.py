"""
Config system - Layered typed configuration with validation.

Sources are merged with precedence:
overrides > environment variables > .env file > JSON config files > defaults
"""

from typing import Any, Dict, Optional, Type, get_origin, get_args
from dataclasses import dataclass, field, fields, is_dataclass, MISSING
from pathlib import Path
import glob
import json
import os
import types

from dotenv import dotenv_values


class ConfigError(Exception):
    """Raised when configuration validation fails."""
    pass


class ConfigLoader:
    """
    Loads and merges configuration from multiple sources.

    Environment keys map to nested sections with a double underscore:
    ``TRUSTGATE_TOKENS__TTL_SECONDS=600`` becomes ``{"tokens": {"ttl_seconds": 600}}``.
    """

    def __init__(self, env_prefix: str = "TRUSTGATE_"):
        self.env_prefix = env_prefix
        self.config_data: Dict[str, Any] = {}

    @classmethod
    def load(
        cls,
        paths: Optional[list[str]] = None,
        env_prefix: str = "TRUSTGATE_",
        env_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
        use_environ: bool = True,
    ) -> "ConfigLoader":
        """
        Load configuration from multiple sources.

        Args:
            paths: JSON config file paths (glob patterns supported)
            env_prefix: Prefix for environment variables
            env_file: Path to .env file
            overrides: Manual overrides (highest precedence)
            use_environ: Read ``os.environ`` (disabled in tests)

        Returns:
            Configured ConfigLoader instance
        """
        loader = cls(env_prefix=env_prefix)

        for pattern in paths or []:
            loader._load_from_files(pattern)

        if env_file:
            loader._load_env_file(env_file)

        if use_environ:
            loader._load_from_env()

        if overrides:
            loader._merge_dict(loader.config_data, overrides)

        return loader

    def _load_from_files(self, pattern: str):
        """Load every JSON file matching a glob pattern, in sorted order."""
        for path in sorted(glob.glob(pattern)):
            self._load_json_file(Path(path))

    def _load_json_file(self, path: Path):
        with open(path) as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a JSON object")
        self._merge_dict(self.config_data, data)

    def _load_env_file(self, path: str):
        """Load prefixed keys from a .env file."""
        env_path = Path(path)
        if not env_path.exists():
            return

        for key, value in dotenv_values(env_path).items():
            if value is not None and key.startswith(self.env_prefix):
                self._set_nested(key, value)

    def _load_from_env(self):
        for key, value in os.environ.items():
            if key.startswith(self.env_prefix):
                self._set_nested(key, value)

    def _set_nested(self, key: str, value: str):
        """Convert TRUSTGATE_KEYS__VALID_DAYS to a nested dict entry."""
        key = key[len(self.env_prefix):]
        parts = key.lower().split("__")

        current = self.config_data
        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        current[parts[-1]] = self._parse_value(value)

    def _parse_value(self, value: str) -> Any:
        """Parse string value to appropriate type."""
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        if value.startswith(("{", "[")):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                pass

        return value

    def _merge_dict(self, target: dict, source: dict):
        """Deep merge source into target."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._merge_dict(target[key], value)
            else:
                target[key] = value

    def get(self, path: str, default: Any = None) -> Any:
        """Get config value by dot-separated path."""
        current = self.config_data
        for part in path.split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current

    def get_section(self, name: str, config_class: Type) -> Any:
        """Instantiate a dataclass section from ``config_data[name]``."""
        data = self.config_data.get(name, {})
        if not isinstance(data, dict):
            raise ConfigError(f"Config section '{name}' must be a mapping")
        return self._instantiate_dataclass(config_class, data, section=name)

    def _instantiate_dataclass(self, config_class: Type, data: dict, section: str = ""):
        kwargs = {}
        known = set()

        for field_info in fields(config_class):
            field_name = field_info.name
            known.add(field_name)

            if field_name in data:
                value = data[field_name]
                if not self._check_type(value, field_info.type):
                    raise ConfigError(
                        f"Config field '{section}.{field_name}' expected {field_info.type}, "
                        f"got {type(value).__name__}"
                    )
                kwargs[field_name] = value
            elif field_info.default is not MISSING:
                kwargs[field_name] = field_info.default
            elif field_info.default_factory is not MISSING:
                kwargs[field_name] = field_info.default_factory()
            else:
                raise ConfigError(f"Required config field '{section}.{field_name}' not provided")

        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown config keys in '{section}': {', '.join(sorted(unknown))}")

        return config_class(**kwargs)

    def _check_type(self, value: Any, expected_type: Type) -> bool:
        """Basic type checking."""
        origin = get_origin(expected_type)
        if origin is types.UnionType or str(origin) == "typing.Union":
            if value is None:
                return type(None) in get_args(expected_type)
            return any(self._check_type(value, arg) for arg in get_args(expected_type) if arg is not type(None))

        if origin:
            return isinstance(value, origin)

        if expected_type is int and isinstance(value, bool):
            return False

        try:
            return isinstance(value, expected_type)
        except TypeError:
            return True

    def to_dict(self) -> dict:
        """Export all config as dictionary."""
        return self.config_data.copy()


# ============================================================================
# Typed Sections
# ============================================================================

@dataclass
class LockoutConfig:
    max_failed_attempts: int = 5


@dataclass
class TokenSettings:
    ttl_seconds: int = 3600
    retention_days: int = 30
    bearer_secret: Optional[str] = None
    bearer_algorithm: str = "HS256"
    issuer: str = "trustgate"


@dataclass
class KeySettings:
    passphrase: Optional[str] = None
    algorithm: str = "RS256"
    key_size: int = 2048
    valid_days: int = 90
    warning_days: int = 10


@dataclass
class MfaSettings:
    issuer: str = "TrustGate"
    digits: int = 6
    period: int = 30
    window: int = 1
    setup_code_ttl: int = 600
    login_code_ttl: int = 300
    backup_code_count: int = 10


@dataclass
class SignatureSettings:
    window_seconds: int = 300
    required: bool = False


@dataclass
class LoggingSettings:
    level: str = "INFO"


@dataclass
class BrokerConfig:
    """Typed configuration for the whole broker."""

    lockout: LockoutConfig = field(default_factory=LockoutConfig)
    tokens: TokenSettings = field(default_factory=TokenSettings)
    keys: KeySettings = field(default_factory=KeySettings)
    mfa: MfaSettings = field(default_factory=MfaSettings)
    signatures: SignatureSettings = field(default_factory=SignatureSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_loader(cls, loader: ConfigLoader) -> "BrokerConfig":
        sections = {}
        for section in fields(cls):
            sections[section.name] = loader.get_section(section.name, section.default_factory)
        return cls(**sections)

    @classmethod
    def load(cls, **kwargs) -> "BrokerConfig":
        """Shortcut for ``BrokerConfig.from_loader(ConfigLoader.load(**kwargs))``."""
        return cls.from_loader(ConfigLoader.load(**kwargs))

    def validate(self) -> "BrokerConfig":
        """
        Check secrets are present and limits are sane.

        Raises:
            ConfigError: listing every problem found
        """
        errors = []

        if not self.keys.passphrase:
            errors.append("keys.passphrase is required to encrypt provider keys")
        if not self.tokens.bearer_secret:
            errors.append("tokens.bearer_secret is required to sign bearer tokens")
        elif len(self.tokens.bearer_secret) < 32:
            errors.append("tokens.bearer_secret must be at least 32 characters")
        if self.keys.algorithm not in ("RS256", "ES256", "EdDSA"):
            errors.append(f"keys.algorithm '{self.keys.algorithm}' is not supported")
        if self.keys.algorithm == "RS256" and self.keys.key_size not in (2048, 3072, 4096):
            errors.append("keys.key_size must be 2048, 3072 or 4096 for RS256")

        positive = {
            "lockout.max_failed_attempts": self.lockout.max_failed_attempts,
            "tokens.ttl_seconds": self.tokens.ttl_seconds,
            "tokens.retention_days": self.tokens.retention_days,
            "keys.valid_days": self.keys.valid_days,
            "mfa.digits": self.mfa.digits,
            "mfa.period": self.mfa.period,
            "mfa.setup_code_ttl": self.mfa.setup_code_ttl,
            "mfa.login_code_ttl": self.mfa.login_code_ttl,
            "mfa.backup_code_count": self.mfa.backup_code_count,
            "signatures.window_seconds": self.signatures.window_seconds,
        }
        for name, value in positive.items():
            if value <= 0:
                errors.append(f"{name} must be positive")

        if self.keys.warning_days < 0 or self.keys.warning_days >= self.keys.valid_days:
            errors.append("keys.warning_days must be between 0 and keys.valid_days")
        if self.mfa.window < 0:
            errors.append("mfa.window must not be negative")
        if self.logging.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"logging.level '{self.logging.level}' is not a valid level")

        if errors:
            raise ConfigError("; ".join(errors))
        return self
