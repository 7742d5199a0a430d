"""
Config system - Layered typed configuration for Tally services.

``TallyConfig`` holds every tunable; ``ConfigLoader`` builds one from
defaults, a JSON file, a ``.env`` file, the process environment and
explicit overrides, in that order of increasing precedence.
"""

from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union, get_type_hints

from dotenv import dotenv_values

from .faults import ConfigInvalidFault

logger = logging.getLogger("tally.config")

DURABLE_BACKENDS = ("memory", "sqlite", "redis", "none")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class TallyConfig:
    """Runtime configuration for the cache, events and database layers."""

    database_url: str = "sqlite:///tally.db"

    # Cache
    cache_default_ttl: float = 300.0
    cache_stale_time: float = 30.0
    cache_key_prefix: str = "@tally:cache:"
    cache_durable_backend: str = "memory"
    cache_durable_path: str = "tally-cache.db"
    redis_url: str = "redis://localhost:6379/0"
    cache_async_durable_write: bool = False

    # Events
    event_max_listeners: int = 10

    # Diagnostics
    log_level: str = "WARNING"
    slow_transaction_threshold: float = 1.0

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Raise ``ConfigInvalidFault`` for the first invalid value."""
        if not self.cache_default_ttl > 0 or math.isinf(self.cache_default_ttl):
            raise ConfigInvalidFault("cache_default_ttl", "must be a positive number")
        if not 0 <= self.cache_stale_time <= self.cache_default_ttl:
            raise ConfigInvalidFault(
                "cache_stale_time", "must be between 0 and cache_default_ttl"
            )
        if not self.cache_key_prefix:
            raise ConfigInvalidFault("cache_key_prefix", "must not be empty")
        if self.cache_durable_backend not in DURABLE_BACKENDS:
            raise ConfigInvalidFault(
                "cache_durable_backend", f"must be one of {', '.join(DURABLE_BACKENDS)}"
            )
        if self.event_max_listeners < 0:
            raise ConfigInvalidFault("event_max_listeners", "must be >= 0")
        self.log_level = self.log_level.upper()
        if self.log_level not in LOG_LEVELS:
            raise ConfigInvalidFault("log_level", f"must be one of {', '.join(LOG_LEVELS)}")
        if self.slow_transaction_threshold < 0:
            raise ConfigInvalidFault("slow_transaction_threshold", "must be >= 0")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_FIELD_TYPES: Dict[str, type] = get_type_hints(TallyConfig)

_TRUE = ("true", "yes", "1", "on")
_FALSE = ("false", "no", "0", "off")


class ConfigLoader:
    """
    Loads and merges configuration from multiple sources with precedence:
    overrides > environment variables > .env file > JSON file > defaults

    Environment keys are the field names upper-cased behind the prefix:
    ``TALLY_CACHE_DEFAULT_TTL=60`` sets ``cache_default_ttl``.
    """

    def __init__(self, env_prefix: str = "TALLY_"):
        self.env_prefix = env_prefix
        self.config_data: Dict[str, Any] = {}

    @classmethod
    def load(
        cls,
        path: Optional[Union[str, Path]] = None,
        env_file: Optional[Union[str, Path]] = None,
        env_prefix: str = "TALLY_",
        overrides: Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> TallyConfig:
        """
        Build a ``TallyConfig`` from every source.

        Args:
            path: JSON config file (missing file is an error)
            env_file: ``.env`` file (missing file is skipped)
            env_prefix: Prefix for environment variables
            overrides: Field values applied last
            environ: Environment mapping (defaults to ``os.environ``)

        Raises:
            ConfigInvalidFault: unknown key, uncoercible or invalid value
        """
        loader = cls(env_prefix=env_prefix)
        if path is not None:
            loader._load_json_file(Path(path))
        if env_file is not None:
            loader._load_env_file(Path(env_file))
        loader._load_from_env(os.environ if environ is None else environ)
        if overrides:
            loader._merge(overrides, source="overrides", strict=True)
        return loader.build()

    def build(self) -> TallyConfig:
        values = {key: self._coerce(key, value) for key, value in self.config_data.items()}
        return TallyConfig(**values)

    def _load_json_file(self, path: Path) -> None:
        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigInvalidFault(str(path), f"cannot read config file: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigInvalidFault(str(path), "config file must contain a JSON object")
        self._merge(data, source=str(path), strict=True)

    def _load_env_file(self, path: Path) -> None:
        if not path.exists():
            logger.debug(f"Env file {path} not found, skipping")
            return
        values = {key: value for key, value in dotenv_values(path).items() if value is not None}
        self._merge(self._strip_prefix(values), source=str(path), strict=False)

    def _load_from_env(self, environ: Mapping[str, str]) -> None:
        self._merge(self._strip_prefix(environ), source="environment", strict=False)

    def _strip_prefix(self, values: Mapping[str, str]) -> Dict[str, str]:
        return {
            key[len(self.env_prefix):].lower(): value
            for key, value in values.items()
            if key.startswith(self.env_prefix)
        }

    def _merge(self, data: Mapping[str, Any], *, source: str, strict: bool) -> None:
        for key, value in data.items():
            if key not in _FIELD_TYPES:
                if strict:
                    raise ConfigInvalidFault(key, f"unknown configuration key (from {source})")
                logger.debug(f"Ignoring unknown configuration key '{key}' from {source}")
                continue
            self.config_data[key] = value

    @staticmethod
    def _coerce(key: str, value: Any) -> Any:
        """Coerce ``value`` to the declared type of field ``key``."""
        target = _FIELD_TYPES[key]

        if target is bool:
            if isinstance(value, bool):
                return value
            if isinstance(value, str) and value.strip().lower() in _TRUE:
                return True
            if isinstance(value, str) and value.strip().lower() in _FALSE:
                return False
            raise ConfigInvalidFault(key, f"expected a boolean, got {value!r}")

        if target in (int, float):
            if isinstance(value, bool):
                raise ConfigInvalidFault(key, f"expected a number, got {value!r}")
            try:
                number = target(value.strip() if isinstance(value, str) else value)
            except (TypeError, ValueError):
                raise ConfigInvalidFault(key, f"expected {target.__name__}, got {value!r}") from None
            if target is float and math.isnan(number):
                raise ConfigInvalidFault(key, "must not be NaN")
            return number

        if not isinstance(value, str):
            raise ConfigInvalidFault(key, f"expected a string, got {value!r}")
        return value

