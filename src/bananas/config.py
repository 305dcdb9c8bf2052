"""Configuration for the bananas telemetry shipper."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Callable


DEFAULT_INGESTION_HOST = "logs-01.loggly.com"

# Spellings accepted from plugin-style option dicts
_CAMEL_CASE_KEYS = {
    "intervalMsec": "interval_msec",
    "uncaughtException": "uncaught_exception",
    "stopTimeoutMsec": "stop_timeout_msec",
    "ingestionHost": "ingestion_host",
}


class ConfigError(ValueError):
    """Raised when the shipper is constructed with invalid settings."""
    pass


@dataclass(frozen=True)
class BananasConfig:
    """
    Shipper settings, read-only after construction.

    Mirrors the Loggly plugin options:
    - token: Loggly customer token (required)
    - interval_msec: flush timer period
    - exclude: exact request paths that never produce response records
    - uncaught_exception: hook fatal exceptions (flush, then exit 1)
    - signals: hook SIGTERM/SIGINT (record, stop host, exit)
    - stop_timeout_msec: how long the host gets to stop after a signal
    - tags: global tags prepended to every record, also sent as x-loggly-tag
    - credentials: extractor called with the request context of
      authenticated requests; its result becomes the record's ``auth``
    """
    token: str = ""
    interval_msec: int = 1000
    exclude: list[str] = field(default_factory=list)
    uncaught_exception: bool = False
    signals: bool = False
    stop_timeout_msec: int = 15 * 1000
    tags: list[str] | None = None
    credentials: Callable[[Any], Any] | None = None
    ingestion_host: str = DEFAULT_INGESTION_HOST

    def __post_init__(self):
        if not self.token:
            raise ConfigError("Missing Loggly API token")
        if self.interval_msec <= 0:
            raise ConfigError(f"interval_msec must be positive, got {self.interval_msec}")
        if self.stop_timeout_msec <= 0:
            raise ConfigError(f"stop_timeout_msec must be positive, got {self.stop_timeout_msec}")

        # Copy caller-owned sequences
        object.__setattr__(self, "exclude", list(self.exclude or []))
        if self.tags is not None:
            object.__setattr__(self, "tags", [str(tag) for tag in self.tags])

    @property
    def uri(self) -> str:
        """Bulk ingestion endpoint for this token."""
        return f"https://{self.ingestion_host}/bulk/{self.token}"

    @property
    def interval_seconds(self) -> float:
        return self.interval_msec / 1000.0

    @property
    def stop_timeout_seconds(self) -> float:
        return self.stop_timeout_msec / 1000.0

    @classmethod
    def from_dict(cls, data: dict) -> BananasConfig:
        """Create config from dictionary (snake_case or camelCase keys)."""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = _CAMEL_CASE_KEYS.get(key, key)
            if name not in known:
                raise ConfigError(f"Unknown option: {key}")
            kwargs[name] = value
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: str) -> BananasConfig:
        """Load config from YAML file (optionally nested under ``bananas:``)."""
        import yaml
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data.get("bananas", data))

    @classmethod
    def from_json(cls, path: str) -> BananasConfig:
        """Load config from JSON file."""
        import json
        with open(path, "r") as f:
            data = json.load(f)
        return cls.from_dict(data.get("bananas", data))
