from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

DEFAULT_API_URL = "https://api.raindrop.io/rest/v1"


class RaindropConfig(BaseModel):
    """Raindrop.io API access and throttling configuration."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    api_url: str = Field(default=DEFAULT_API_URL, validation_alias="RAINDROP_API_URL")
    token: str = Field(default="", validation_alias="RAINDROP_TOKEN")
    timeout_sec: float = Field(default=30.0, validation_alias="RAINDROP_TIMEOUT_SEC")
    rate_limit_requests: int = Field(default=120, validation_alias="RAINDROP_RATE_LIMIT_REQUESTS")
    rate_limit_window_sec: float = Field(
        default=60.0, validation_alias="RAINDROP_RATE_LIMIT_WINDOW_SEC"
    )
    max_retries: int = Field(default=3, validation_alias="RAINDROP_MAX_RETRIES")
    retry_base_delay_sec: float = Field(
        default=1.0, validation_alias="RAINDROP_RETRY_BASE_DELAY_SEC"
    )
    retry_after_default_sec: float = Field(
        default=60.0, validation_alias="RAINDROP_RETRY_AFTER_DEFAULT_SEC"
    )
    retry_after_cap_sec: float = Field(
        default=120.0, validation_alias="RAINDROP_RETRY_AFTER_CAP_SEC"
    )
    bulk_chunk_size: int = Field(default=100, validation_alias="RAINDROP_BULK_CHUNK_SIZE")
    page_size: int = Field(default=50, validation_alias="RAINDROP_PAGE_SIZE")

    @field_validator("api_url", mode="before")
    @classmethod
    def _validate_api_url(cls, value: Any) -> str:
        url = str(value or DEFAULT_API_URL).strip()
        if not url:
            return DEFAULT_API_URL
        return url.rstrip("/")

    @field_validator("token", mode="before")
    @classmethod
    def _validate_token(cls, value: Any) -> str:
        if value in (None, ""):
            return ""
        token = str(value).strip()
        if len(token) > 500:
            msg = "Raindrop token appears to be too long"
            raise ValueError(msg)
        return token

    @field_validator(
        "rate_limit_requests", "max_retries", "bulk_chunk_size", "page_size", mode="before"
    )
    @classmethod
    def _validate_non_negative_int(cls, value: Any, info: ValidationInfo) -> int:
        default = cls.model_fields[info.field_name].default
        try:
            parsed = int(str(value if value not in (None, "") else default))
        except ValueError as exc:
            msg = f"{info.field_name.replace('_', ' ')} must be a valid integer"
            raise ValueError(msg) from exc
        if parsed < 0 or (parsed == 0 and info.field_name != "max_retries"):
            msg = f"{info.field_name.replace('_', ' ')} must be positive"
            raise ValueError(msg)
        return parsed

    @field_validator(
        "timeout_sec",
        "rate_limit_window_sec",
        "retry_base_delay_sec",
        "retry_after_default_sec",
        "retry_after_cap_sec",
        mode="before",
    )
    @classmethod
    def _validate_positive_float(cls, value: Any, info: ValidationInfo) -> float:
        default = cls.model_fields[info.field_name].default
        try:
            parsed = float(str(value if value not in (None, "") else default))
        except ValueError as exc:
            msg = f"{info.field_name.replace('_', ' ')} must be a number"
            raise ValueError(msg) from exc
        if parsed < 0:
            msg = f"{info.field_name.replace('_', ' ')} must not be negative"
            raise ValueError(msg)
        return parsed
