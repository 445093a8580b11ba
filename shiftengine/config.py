"""Configuration loading (YAML or JSON)."""

from __future__ import annotations

import json
from dataclasses import dataclass, fields
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from shiftengine.errors import ValidationFailed


@dataclass
class ShiftEngineConfig:
    database_url: str = "sqlite:///shiftengine.db"
    timezone: str = "UTC"
    lock_timeout_seconds: float = 5.0
    transaction_timeout_seconds: float = 10.0
    max_retries: int = 3
    retry_backoff_seconds: float = 0.05
    log_level: str = "INFO"

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def validate(self) -> "ShiftEngineConfig":
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValidationFailed(f"Unknown timezone '{self.timezone}'") from e
        if self.lock_timeout_seconds <= 0:
            raise ValidationFailed("lock_timeout_seconds must be positive")
        if self.transaction_timeout_seconds <= 0:
            raise ValidationFailed("transaction_timeout_seconds must be positive")
        if self.max_retries < 0:
            raise ValidationFailed("max_retries must not be negative")
        if self.retry_backoff_seconds < 0:
            raise ValidationFailed("retry_backoff_seconds must not be negative")
        return self


def config_from_dict(data: dict | None) -> ShiftEngineConfig:
    """
    Build a config from a plain mapping, rejecting unknown keys.

    Args:
        data: Parsed YAML/JSON mapping (None means all defaults)

    Returns:
        Validated ShiftEngineConfig
    """
    data = dict(data or {})
    known = {f.name for f in fields(ShiftEngineConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValidationFailed(f"Unknown configuration keys: {', '.join(unknown)}")
    return ShiftEngineConfig(**data).validate()


def load_config(path: str | Path | None = None) -> ShiftEngineConfig:
    """
    Load configuration from a YAML or JSON file.

    Args:
        path: Config file path; None returns the defaults

    Returns:
        Validated ShiftEngineConfig
    """
    if path is None:
        return ShiftEngineConfig().validate()

    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)

    if data is not None and not isinstance(data, dict):
        raise ValidationFailed(f"Config file {path} must contain a mapping")
    return config_from_dict(data)
