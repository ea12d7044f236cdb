"""
AEGIS Configuration System

Unified configuration management with YAML files, environment variables,
JSON Schema validation, and runtime updates.

Configuration Sources (in order of precedence):
    1. Environment variables (AEGIS_*)
    2. Runtime overrides
    3. User config file (~/.aegis/config.yaml)
    4. Project config file (./aegis.yaml)
    5. Default values

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml
from jsonschema import Draft202012Validator

T = TypeVar("T")


class ConfigError(Exception):
    """Configuration error."""
    pass


class ConfigValidationError(ConfigError):
    """Configuration validation error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding,
    validation, and change callbacks. File values and runtime
    overrides are held separately so reloading a file never
    replaces a runtime override.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)
    _file_value: Optional[T] = field(default=None, repr=False)
    _callbacks: List[Callable[[T, T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])
        if self._value is not None:
            return self._value
        if self._file_value is not None:
            return self._file_value
        return self.default

    def _check(self, value: T) -> None:
        if self.validator and not self.validator(value):
            raise ConfigValidationError(f"Invalid value for config: {value}")

    def set(self, value: T) -> None:
        """Set a runtime override with validation."""
        self._check(value)
        old_value = self._value
        self._value = value

        for callback in self._callbacks:
            callback(old_value, value)

    def set_from_file(self, value: T) -> None:
        """Set the value read from a configuration file."""
        self._check(value)
        old_value = self._file_value
        self._file_value = value

        for callback in self._callbacks:
            callback(old_value, value)

    def reset(self) -> None:
        """Drop the runtime override."""
        self._value = None

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            return int(value)  # type: ignore
        else:
            return value  # type: ignore

    def on_change(self, callback: Callable[[T, T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


def _positive(x: Any) -> bool:
    return isinstance(x, int) and not isinstance(x, bool) and x > 0


def _non_negative(x: Any) -> bool:
    return isinstance(x, int) and not isinstance(x, bool) and x >= 0


@dataclass
class AccumulatorConfig:
    """Configuration for the global deposit tree."""
    max_depth: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=32,
        env_var="AEGIS_ACCUMULATOR_MAX_DEPTH",
        description="Maximum depth of the deposit tree",
        validator=lambda x: _positive(x) and x <= 64,
    ))
    root_history_size: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=30,
        env_var="AEGIS_ROOT_HISTORY_SIZE",
        description="Number of recent deposit roots accepted by withdrawals",
        validator=_positive,
    ))


@dataclass
class GovernanceConfig:
    """Configuration for ASP registration and auditor approval."""
    min_stake: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=10000,
        env_var="AEGIS_ASP_MIN_STAKE",
        description="Minimum stake an ASP must post at registration",
        validator=_positive,
    ))
    approval_threshold: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=2,
        env_var="AEGIS_ASP_APPROVAL_THRESHOLD",
        description="Auditor votes needed to activate an ASP",
        validator=_positive,
    ))
    require_key_proof: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="AEGIS_ASP_REQUIRE_KEY_PROOF",
        description="Require a Schnorr proof of key possession at registration",
    ))


@dataclass
class AssociationConfig:
    """Configuration for association sets."""
    max_batch_size: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1024,
        env_var="AEGIS_SET_MAX_BATCH",
        description="Maximum members added to a set in one call",
        validator=_positive,
    ))
    max_depth: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=32,
        env_var="AEGIS_SET_MAX_DEPTH",
        description="Maximum depth of an association set tree",
        validator=lambda x: _positive(x) and x <= 64,
    ))
    root_history_size: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=30,
        env_var="AEGIS_SET_ROOT_HISTORY_SIZE",
        description="Number of recent set roots accepted by membership checks",
        validator=_positive,
    ))


@dataclass
class PoolConfig:
    """Configuration for deposits, withdrawals and ragequit."""
    max_batch_deposit: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=16,
        env_var="AEGIS_POOL_MAX_BATCH_DEPOSIT",
        description="Maximum deposits in one batch",
        validator=_positive,
    ))
    ragequit_delay_seconds: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=86400,
        env_var="AEGIS_RAGEQUIT_DELAY",
        description="Seconds between a ragequit request and its execution",
        validator=_non_negative,
    ))
    ragequit_window_seconds: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=604800,
        env_var="AEGIS_RAGEQUIT_WINDOW",
        description="Seconds a matured ragequit stays executable",
        validator=_positive,
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for Observability."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="AEGIS_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="AEGIS_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))
    audit_enabled: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=True,
        env_var="AEGIS_AUDIT_ENABLED",
        description="Record a hash-chained audit trail of pool mutations",
    ))


@dataclass
class AegisConfig:
    """
    Root configuration for AEGIS.

    Aggregates all component configurations and provides
    loading/saving functionality.
    """
    accumulator: AccumulatorConfig = field(default_factory=AccumulatorConfig)
    governance: GovernanceConfig = field(default_factory=GovernanceConfig)
    association: AssociationConfig = field(default_factory=AssociationConfig)
    pool: PoolConfig = field(default_factory=PoolConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        """Convert to YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False)


_JSON_TYPES = {int: "integer", bool: "boolean", str: "string"}


def build_json_schema(config: Optional[AegisConfig] = None) -> Dict[str, Any]:
    """JSON Schema (draft 2020-12) for configuration files."""
    config = config or AegisConfig()

    def node(obj: Any) -> Dict[str, Any]:
        if isinstance(obj, ConfigValue):
            out: Dict[str, Any] = {
                "type": _JSON_TYPES.get(type(obj.default), "string"),
                "default": obj.default,
                "description": obj.description,
            }
            return out
        props = {k: node(getattr(obj, k)) for k in obj.__dataclass_fields__}
        return {"type": "object", "properties": props, "additionalProperties": False}

    schema = node(config)
    schema["$schema"] = "https://json-schema.org/draft/2020-12/schema"
    schema["title"] = "AEGIS configuration"
    return schema


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.

    Thread-safe singleton that manages configuration lifecycle.
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._config = AegisConfig()
        self._config_paths: List[Path] = []
        self._watchers: List[Callable[[AegisConfig], None]] = []
        self._validator = Draft202012Validator(build_json_schema(self._config))
        self._initialized = True
        self.load_defaults()

    @property
    def config(self) -> AegisConfig:
        """Get the current configuration."""
        return self._config

    def check_document(self, data: Any) -> List[str]:
        """Schema errors for a configuration document, empty when valid."""
        return [
            f"{'.'.join(str(p) for p in err.absolute_path) or '<root>'}: {err.message}"
            for err in sorted(self._validator.iter_errors(data), key=lambda e: list(e.absolute_path))
        ]

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f)

        if data:
            self.load_from_dict(data)
            if path not in self._config_paths:
                self._config_paths.append(path)

    def load_from_dict(self, data: Dict[str, Any]) -> None:
        errors = self.check_document(data)
        if errors:
            raise ConfigValidationError("; ".join(errors))
        self._apply_dict(data)

    def load_defaults(self) -> None:
        """Load default configuration files if they exist.

        The user file is applied after the project file and wins over it.
        """
        default_paths = [
            Path("aegis.yaml"),
            Path.home() / ".aegis" / "config.yaml",
        ]

        for path in default_paths:
            if path.exists():
                self.load_from_file(path)

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        """Apply dictionary values to configuration."""
        def apply_to_config(config_obj: Any, values: Dict[str, Any]) -> None:
            for key, value in values.items():
                if hasattr(config_obj, key):
                    attr = getattr(config_obj, key)
                    if isinstance(attr, ConfigValue):
                        attr.set_from_file(value)
                    elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                        apply_to_config(attr, value)

        apply_to_config(self._config, data)

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("pool.ragequit_delay_seconds", 300)
        """
        parts = path.split(".")
        obj: Any = self._config

        for part in parts[:-1]:
            obj = getattr(obj, part, None)
            if obj is None:
                raise ConfigError(f"Invalid config path: {path}")

        attr = getattr(obj, parts[-1], None)
        if isinstance(attr, ConfigValue):
            attr.set(value)
        else:
            raise ConfigError(f"Invalid config path: {path}")

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("governance.min_stake")
        """
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)

        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def watch(self, callback: Callable[[AegisConfig], None]) -> None:
        """Register a callback for configuration changes."""
        self._watchers.append(callback)

    def reload(self) -> None:
        """Reload configuration from all loaded files."""
        for path in self._config_paths:
            if path.exists():
                self.load_from_file(path)

        for watcher in self._watchers:
            watcher(self._config)

    def validate(self) -> List[str]:
        """
        Validate all configuration values.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                except ValueError as e:
                    errors.append(f"{path}: {e}")
                    return
                if obj.validator and not obj.validator(value):
                    errors.append(f"{path}: validation failed for value {value}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Export configuration schema for documentation."""
        return build_json_schema(self._config)


def get_config() -> AegisConfig:
    """Get the current AEGIS configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance."""
    return ConfigManager()
