from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


class SyncConfig(BaseModel):
    """Reconciliation, queue and observer tuning."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    enabled: bool = Field(default=False, validation_alias="SYNC_ENABLED")
    pull_interval_minutes: int = Field(default=5, validation_alias="SYNC_INTERVAL_MINUTES")
    queue_drain_interval_sec: float = Field(
        default=60.0, validation_alias="SYNC_QUEUE_DRAIN_INTERVAL_SEC"
    )
    batch_window_ms: int = Field(default=300, validation_alias="SYNC_BATCH_WINDOW_MS")
    queue_lock_stale_sec: float = Field(default=300.0, validation_alias="SYNC_QUEUE_LOCK_STALE_SEC")
    max_retries: int = Field(default=3, validation_alias="SYNC_MAX_RETRIES")
    failed_queue_limit: int = Field(default=100, validation_alias="SYNC_FAILED_QUEUE_LIMIT")
    recent_errors_limit: int = Field(default=50, validation_alias="SYNC_RECENT_ERRORS_LIMIT")
    max_nesting_depth: int = Field(default=5, validation_alias="SYNC_MAX_NESTING_DEPTH")

    @field_validator("pull_interval_minutes", mode="before")
    @classmethod
    def _validate_pull_interval(cls, value: Any) -> int:
        try:
            parsed = int(str(value if value not in (None, "") else 5))
        except ValueError as exc:
            msg = "Sync interval must be a valid integer"
            raise ValueError(msg) from exc
        if parsed < 1 or parsed > 1440:
            msg = "Sync interval must be between 1 and 1440 minutes"
            raise ValueError(msg)
        return parsed

    @field_validator(
        "batch_window_ms",
        "max_retries",
        "failed_queue_limit",
        "recent_errors_limit",
        "max_nesting_depth",
        mode="before",
    )
    @classmethod
    def _validate_positive_int(cls, value: Any, info: ValidationInfo) -> int:
        default = cls.model_fields[info.field_name].default
        try:
            parsed = int(str(value if value not in (None, "") else default))
        except ValueError as exc:
            msg = f"{info.field_name.replace('_', ' ')} must be a valid integer"
            raise ValueError(msg) from exc
        if parsed <= 0:
            msg = f"{info.field_name.replace('_', ' ')} must be positive"
            raise ValueError(msg)
        return parsed

    @field_validator("queue_drain_interval_sec", "queue_lock_stale_sec", mode="before")
    @classmethod
    def _validate_positive_seconds(cls, value: Any, info: ValidationInfo) -> float:
        default = cls.model_fields[info.field_name].default
        try:
            parsed = float(str(value if value not in (None, "") else default))
        except ValueError as exc:
            msg = f"{info.field_name.replace('_', ' ')} must be a number"
            raise ValueError(msg) from exc
        if parsed <= 0:
            msg = f"{info.field_name.replace('_', ' ')} must be positive"
            raise ValueError(msg)
        return parsed

    @property
    def batch_window_sec(self) -> float:
        return self.batch_window_ms / 1000
