from __future__ import annotations

from .client import (
    RaindropApiError,
    RaindropAuthError,
    RaindropClient,
    RaindropClientError,
    RaindropNotFoundError,
    RaindropRateLimitError,
    RaindropRetryableError,
)
from .models import CreateRaindropRequest, Raindrop, RaindropCollection, RaindropUser
from .rate_limiter import SlidingWindowRateLimiter

__all__ = [
    "CreateRaindropRequest",
    "Raindrop",
    "RaindropApiError",
    "RaindropAuthError",
    "RaindropClient",
    "RaindropClientError",
    "RaindropCollection",
    "RaindropNotFoundError",
    "RaindropRateLimitError",
    "RaindropRetryableError",
    "RaindropUser",
    "SlidingWindowRateLimiter",
]
