from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from . import paths
from .db import INITIAL_RETRY_DELAY_MS, MAX_RETRY_ATTEMPTS, MAX_RETRY_DELAY_MS, RetryPolicy


@dataclass
class NovaSearchConfig:
    # Storage
    db_path: str = field(default_factory=paths.get_database_path)

    # Opening the index while the indexer writes
    retry_max_attempts: int = MAX_RETRY_ATTEMPTS
    retry_initial_delay_ms: int = INITIAL_RETRY_DELAY_MS
    retry_max_delay_ms: int = MAX_RETRY_DELAY_MS
    busy_timeout_s: float = 0.0

    # Indexer-owned config.toml holding the [ui] table
    ui_config_path: str = field(default_factory=paths.get_indexer_config_path)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=int(self.retry_max_attempts),
            initial_delay_ms=int(self.retry_initial_delay_ms),
            max_delay_ms=int(self.retry_max_delay_ms),
        )


class AllowedConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    db_path: Optional[str] = None
    retry_max_attempts: int = MAX_RETRY_ATTEMPTS
    retry_initial_delay_ms: int = INITIAL_RETRY_DELAY_MS
    retry_max_delay_ms: int = MAX_RETRY_DELAY_MS
    busy_timeout_s: float = 0.0
    ui_config_path: Optional[str] = None

    @field_validator("retry_max_attempts")
    @classmethod
    def validate_attempts(cls, value: int) -> int:
        if int(value) < 1:
            raise ValueError("retry_max_attempts must be at least 1")
        return value

    @field_validator("retry_initial_delay_ms", "busy_timeout_s")
    @classmethod
    def validate_non_negative(cls, value):  # type: ignore[no-untyped-def]
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("retry_max_delay_ms")
    @classmethod
    def validate_max_delay(cls, value: int, info):  # type: ignore[override]
        initial = info.data.get("retry_initial_delay_ms", INITIAL_RETRY_DELAY_MS)
        if int(value) < int(initial):
            raise ValueError("retry_max_delay_ms must not be less than retry_initial_delay_ms")
        return value


def load_config(path: Optional[str] = None) -> NovaSearchConfig:
    """Load config from YAML.

    Default path: ~/.config/novasearch/novasearch.yaml

    Example:

        db_path: ~/.local/share/novasearch/index.db
        busy_timeout_s: 0.5
        retry_max_attempts: 5
    """

    if path is None:
        path = os.environ.get("NOVASEARCH_CONFIG_PATH") or paths.get_panel_config_path()

    if not os.path.exists(path):
        return NovaSearchConfig()
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Invalid configuration: expected a mapping in {path}")

    try:
        validated = AllowedConfig.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc

    values = {k: v for k, v in validated.model_dump().items() if v is not None}
    cfg = NovaSearchConfig(**values)

    cfg.db_path = os.path.abspath(os.path.expanduser(cfg.db_path))
    cfg.ui_config_path = os.path.abspath(os.path.expanduser(cfg.ui_config_path))
    if cfg.busy_timeout_s > 5.0:
        logging.warning(
            "busy_timeout_s (%s) is long; every open attempt may block for that long before backing off.",
            cfg.busy_timeout_s,
        )

    return cfg
