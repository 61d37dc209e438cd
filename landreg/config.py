"""
Land Registry Configuration

Unified configuration management with YAML files, environment variables,
validation, and runtime updates.

Configuration Sources (in order of precedence):
    1. Environment variables (LANDREG_*)
    2. Runtime overrides (ConfigManager.set)
    3. User config file (~/.landreg/config.yaml)
    4. Project config files (./config/landreg.yaml, ./landreg.yaml)
    5. Default values

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

from landreg.observability import EngineLayer, get_logger

T = TypeVar("T")

log = get_logger("config", EngineLayer.CONFIG)


class ConfigError(Exception):
    """Configuration error."""


class ValidationError(ConfigError):
    """Configuration validation error."""


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    The bound environment variable, when present, always wins over any value
    set from a file or at runtime.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)

    def get(self) -> T:
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])
        return self._value if self._value is not None else self.default

    def set(self, value: Any) -> None:
        if isinstance(value, str) and not isinstance(self.default, str):
            value = self._coerce(value)
        elif isinstance(self.default, float) and isinstance(value, int) and not isinstance(value, bool):
            value = float(value)
        if self.validator and not self.validator(value):
            raise ValidationError(f"Invalid value for config: {value!r}")
        self._value = value

    def reset(self) -> None:
        self._value = None

    def _coerce(self, value: str) -> T:
        """Coerce string value to the type of the default."""
        target_type = type(self.default)
        try:
            if target_type == bool:
                return value.strip().lower() in ("true", "1", "yes", "on")  # type: ignore
            if target_type == int:
                return int(value)  # type: ignore
            if target_type == float:
                return float(value)  # type: ignore
        except ValueError as e:
            raise ValidationError(f"Cannot coerce {value!r} to {target_type.__name__}") from e
        return value  # type: ignore


def _positive(x: Any) -> bool:
    return x > 0


@dataclass
class EvidenceConfig:
    """Configuration for the evidence reference store."""
    timeout_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=30.0,
        env_var="LANDREG_EVIDENCE_TIMEOUT",
        description="Timeout for evidence store calls in seconds",
        validator=_positive,
    ))
    max_document_bytes: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=10 * 1024 * 1024,  # 10MB
        env_var="LANDREG_EVIDENCE_MAX_BYTES",
        description="Maximum size of a single evidence document",
        validator=_positive,
    ))


@dataclass
class DirectoryConfig:
    """Configuration for the account directory."""
    timeout_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=5.0,
        env_var="LANDREG_DIRECTORY_TIMEOUT",
        description="Timeout for account directory lookups in seconds",
        validator=_positive,
    ))


@dataclass
class LedgerConfig:
    """Configuration for the advisory ledger anchor."""
    enabled: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=True,
        env_var="LANDREG_LEDGER_ENABLED",
        description="Anchor completed transfers to the ledger",
    ))
    timeout_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=10.0,
        env_var="LANDREG_LEDGER_TIMEOUT",
        description="Timeout for one ledger anchor call in seconds",
        validator=_positive,
    ))
    max_retry_attempts: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=3,
        env_var="LANDREG_LEDGER_MAX_RETRIES",
        description="Attempts per anchor before giving up",
        validator=lambda x: 1 <= x <= 20,
    ))
    base_delay_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=0.5,
        env_var="LANDREG_LEDGER_BASE_DELAY",
        description="Initial backoff delay between anchor attempts",
        validator=lambda x: x >= 0,
    ))
    max_delay_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=30.0,
        env_var="LANDREG_LEDGER_MAX_DELAY",
        description="Upper bound on backoff delay",
        validator=lambda x: x >= 0,
    ))
    queue_size: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1000,
        env_var="LANDREG_LEDGER_QUEUE_SIZE",
        description="Maximum pending anchor requests",
        validator=_positive,
    ))
    breaker_failure_threshold: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=5,
        env_var="LANDREG_LEDGER_BREAKER_THRESHOLD",
        description="Consecutive failures before the ledger circuit opens",
        validator=_positive,
    ))
    breaker_reset_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=60.0,
        env_var="LANDREG_LEDGER_BREAKER_RESET",
        description="Seconds the ledger circuit stays open before probing",
        validator=_positive,
    ))


@dataclass
class WorkflowConfig:
    """Configuration for the workflow orchestrator."""
    max_evidence_items: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=20,
        env_var="LANDREG_WORKFLOW_MAX_EVIDENCE",
        description="Maximum evidence items per submission",
        validator=_positive,
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for logging."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="LANDREG_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="LANDREG_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class LandregConfig:
    """Root configuration for the land registry engine."""
    evidence: EvidenceConfig = field(default_factory=EvidenceConfig)
    directory: DirectoryConfig = field(default_factory=DirectoryConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return obj.get()
            if hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=True)


def _walk(obj: Any, path: str = ""):
    """Yield (dotted_path, ConfigValue) pairs."""
    if isinstance(obj, ConfigValue):
        yield path, obj
    elif hasattr(obj, "__dataclass_fields__"):
        for name in obj.__dataclass_fields__:
            yield from _walk(getattr(obj, name), f"{path}.{name}" if path else name)


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
        self._config = LandregConfig()
        self._config_paths: List[Path] = []
        self._initialized = True

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the singleton; the next ConfigManager() starts from defaults."""
        with cls._lock:
            cls._instance = None

    @property
    def config(self) -> LandregConfig:
        return self._config

    @property
    def loaded_paths(self) -> List[Path]:
        return list(self._config_paths)

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if data is None:
            return
        if not isinstance(data, dict):
            raise ConfigError(f"Top level of {path} must be a mapping")
        self._apply_dict(data)
        self._config_paths.append(path)
        log.info("Loaded configuration file", path=str(path))

    def load_defaults(self) -> None:
        """Load the default configuration files that exist, lowest precedence first."""
        default_paths = [
            Path.home() / ".landreg" / "config.yaml",
            Path("config/landreg.yaml"),
            Path("landreg.yaml"),
        ]
        for path in default_paths:
            if path.exists():
                try:
                    self.load_from_file(path)
                except ConfigError as e:
                    log.warning("Skipping unreadable configuration file", path=str(path), error=str(e))

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        def apply_to_config(config_obj: Any, values: Dict[str, Any], prefix: str) -> None:
            for key, value in values.items():
                path = f"{prefix}{key}"
                if not hasattr(config_obj, key):
                    raise ConfigError(f"Unknown configuration key: {path}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                    apply_to_config(attr, value, f"{path}.")
                else:
                    raise ConfigError(f"Configuration section {path} must be a mapping")

        apply_to_config(self._config, data, "")

    def _resolve(self, path: str) -> ConfigValue:
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        if not isinstance(obj, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        return obj

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: manager.set("ledger.max_retry_attempts", 5)
        """
        self._resolve(path).set(value)

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: manager.get("evidence.timeout_seconds")
        """
        return self._resolve(path).get()

    def validate(self) -> List[str]:
        """Validate all configuration values; returns a list of problems."""
        errors: List[str] = []
        for path, value in _walk(self._config):
            try:
                current = value.get()
            except ConfigError as e:
                errors.append(f"{path}: {e}")
                continue
            if value.validator and not value.validator(current):
                errors.append(f"{path}: validation failed for value {current!r}")
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Export configuration schema for documentation."""
        schema: Dict[str, Any] = {}
        for path, value in _walk(self._config):
            schema[path] = {
                "type": type(value.default).__name__,
                "default": value.default,
                "description": value.description,
                "env_var": value.env_var,
            }
        return schema


def get_config() -> LandregConfig:
    """Get the current process-wide configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    return ConfigManager()
