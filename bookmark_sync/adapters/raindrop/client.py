"""Raindrop.io API client."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import TYPE_CHECKING, Any

import httpx

from bookmark_sync.adapters.raindrop.models import (
    CreateRaindropRequest,
    Raindrop,
    RaindropCollection,
    RaindropUser,
)
from bookmark_sync.adapters.raindrop.rate_limiter import SlidingWindowRateLimiter

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence
    from typing import Self

    from bookmark_sync.config.raindrop import RaindropConfig

    TokenProvider = Callable[[], Awaitable[str | None]]
    UnauthorizedHook = Callable[[], Awaitable[None]]

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.raindrop.io/rest/v1"
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0  # seconds
DEFAULT_MAX_DELAY = 30.0  # seconds
DEFAULT_RETRY_AFTER = 60.0  # seconds, when a 429 carries no usable hint
DEFAULT_RETRY_AFTER_CAP = 120.0  # seconds
DEFAULT_BULK_CHUNK_SIZE = 100
DEFAULT_PAGE_SIZE = 50


class RaindropClientError(Exception):
    """Base exception for Raindrop client errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RaindropRetryableError(RaindropClientError):
    """Transient failure (5xx or network) that survived the client's own retries."""


class RaindropRateLimitError(RaindropRetryableError):
    """Still rate limited (429) after honoring the server's retry hints."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class RaindropAuthError(RaindropClientError):
    """Missing or rejected credential. Never retried."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=401)


class RaindropNotFoundError(RaindropClientError):
    """The requested collection or raindrop does not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=404)


class RaindropApiError(RaindropClientError):
    """Any other non-success response."""


def _calculate_delay(attempt: int, base_delay: float, max_delay: float, jitter: float) -> float:
    """Calculate delay with exponential backoff and jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Base delay in seconds
        max_delay: Maximum delay in seconds
        jitter: Jitter factor (0.1 = 10% random variation)

    Returns:
        Delay in seconds
    """
    delay = min(base_delay * (2**attempt), max_delay)
    return delay + delay * jitter * random.random()


def _parse_retry_after(value: str | None, default: float, cap: float) -> float:
    try:
        seconds = float(value) if value else default
    except ValueError:
        seconds = default
    return min(max(seconds, 0.0), cap)


def _chunks(items: Sequence[Any], size: int) -> list[Sequence[Any]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class RaindropClient:
    """Async HTTP client for the Raindrop.io REST API.

    Every request passes through the sliding-window rate limiter. 429 responses
    honor ``Retry-After`` (capped); 5xx and network failures back off
    exponentially; 401 invokes ``on_unauthorized`` and raises ``RaindropAuthError``.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_BASE_DELAY,
        retry_max_delay: float = DEFAULT_MAX_DELAY,
        retry_jitter: float = 0.0,
        retry_after_default: float = DEFAULT_RETRY_AFTER,
        retry_after_cap: float = DEFAULT_RETRY_AFTER_CAP,
        bulk_chunk_size: int = DEFAULT_BULK_CHUNK_SIZE,
        page_size: int = DEFAULT_PAGE_SIZE,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        on_unauthorized: UnauthorizedHook | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize Raindrop client.

        Args:
            token_provider: Async callable returning the current API token (or None)
            api_url: Base URL for the Raindrop REST API
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for 429, 5xx and network failures
            retry_base_delay: Base delay between retries in seconds
            retry_max_delay: Maximum delay between retries in seconds
            retry_jitter: Random jitter factor added to backoff delays
            retry_after_default: Wait used when a 429 carries no Retry-After header
            retry_after_cap: Upper bound for any Retry-After wait
            bulk_chunk_size: Items per bulk-create request
            page_size: Items per page when listing a collection
            rate_limiter: Shared limiter; a default 120/60s window is created if None
            on_unauthorized: Hook awaited on 401, typically clears the stored token
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
            sleep: Awaitable sleep used for backoff waits
        """
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.retry_jitter = retry_jitter
        self.retry_after_default = retry_after_default
        self.retry_after_cap = retry_after_cap
        self.bulk_chunk_size = bulk_chunk_size
        self.page_size = page_size
        self._token_provider = token_provider
        self._on_unauthorized = on_unauthorized
        self._rate_limiter = rate_limiter or SlidingWindowRateLimiter()
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(
        cls,
        config: RaindropConfig,
        token_provider: TokenProvider,
        **kwargs: Any,
    ) -> RaindropClient:
        kwargs.setdefault(
            "rate_limiter",
            SlidingWindowRateLimiter(config.rate_limit_requests, config.rate_limit_window_sec),
        )
        return cls(
            token_provider,
            api_url=config.api_url,
            timeout=config.timeout_sec,
            max_retries=config.max_retries,
            retry_base_delay=config.retry_base_delay_sec,
            retry_after_default=config.retry_after_default_sec,
            retry_after_cap=config.retry_after_cap_sec,
            bulk_chunk_size=config.bulk_chunk_size,
            page_size=config.page_size,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.api_url,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
                transport=self._transport,
            )

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> Self:
        """Enter async context."""
        await self.open()
        return self

    async def __aexit__(self, *args: object) -> None:
        """Exit async context."""
        await self.aclose()

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client."""
        if self._client is None:
            raise RaindropClientError("Client not initialized. Use async context manager.")
        return self._client

    # ------------------------------------------------------------------
    # Request core
    # ------------------------------------------------------------------

    async def _backoff(self, attempt: int, operation_name: str, error: str) -> None:
        delay = _calculate_delay(
            attempt, self.retry_base_delay, self.retry_max_delay, self.retry_jitter
        )
        logger.warning(
            "raindrop_retry_attempt",
            extra={
                "operation": operation_name,
                "attempt": attempt + 1,
                "max_retries": self.max_retries,
                "delay_seconds": round(delay, 2),
                "error": error,
            },
        )
        await self._sleep(delay)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation_name: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> dict[str, Any]:
        attempt = 0
        while True:
            await self._rate_limiter.acquire()
            token = await self._token_provider()
            if not token:
                raise RaindropAuthError("Not authenticated. Please add your Raindrop token.")

            try:
                response = await self.client.request(
                    method,
                    path,
                    params=params,
                    json=json,
                    headers={"Authorization": f"Bearer {token}"},
                )
            except httpx.TransportError as exc:
                if attempt >= self.max_retries:
                    logger.error(
                        "raindrop_retry_exhausted",
                        extra={
                            "operation": operation_name,
                            "attempts": attempt + 1,
                            "error": str(exc),
                        },
                    )
                    raise RaindropRetryableError(
                        f"{operation_name} failed after {attempt + 1} attempts: {exc}"
                    ) from exc
                await self._backoff(attempt, operation_name, str(exc))
                attempt += 1
                continue

            status = response.status_code

            if status == 429:
                wait_time = _parse_retry_after(
                    response.headers.get("Retry-After"),
                    self.retry_after_default,
                    self.retry_after_cap,
                )
                if attempt >= self.max_retries:
                    raise RaindropRateLimitError(
                        f"Rate limited after {self.max_retries} retries: {method} {path}",
                        retry_after=wait_time,
                    )
                logger.warning(
                    "raindrop_rate_limited",
                    extra={
                        "operation": operation_name,
                        "attempt": attempt + 1,
                        "wait_seconds": wait_time,
                    },
                )
                await self._sleep(wait_time)
                attempt += 1
                continue

            if status == 401:
                logger.warning("raindrop_token_invalid", extra={"operation": operation_name})
                if self._on_unauthorized is not None:
                    await self._on_unauthorized()
                raise RaindropAuthError("Token invalid. Please check your Raindrop token.")

            if status >= 500:
                if attempt < self.max_retries:
                    await self._backoff(attempt, operation_name, f"HTTP {status}")
                    attempt += 1
                    continue
                raise RaindropRetryableError(
                    f"{operation_name} failed after {attempt + 1} attempts: HTTP {status}",
                    status_code=status,
                )

            if status == 404:
                raise RaindropNotFoundError(f"{operation_name}: not found ({method} {path})")

            if status >= 400:
                raise RaindropApiError(
                    f"API request failed: {status} {response.reason_phrase}", status_code=status
                )

            payload: dict[str, Any] = response.json() if response.content else {}
            if payload.get("result") is False:
                raise RaindropApiError(f"{operation_name} returned an unsuccessful result", status)
            return payload

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    async def get_root_collections(self) -> list[RaindropCollection]:
        data = await self._request("GET", "/collections", operation_name="get_root_collections")
        return [RaindropCollection.model_validate(item) for item in data.get("items", [])]

    async def get_child_collections(self) -> list[RaindropCollection]:
        data = await self._request(
            "GET", "/collections/childrens", operation_name="get_child_collections"
        )
        return [RaindropCollection.model_validate(item) for item in data.get("items", [])]

    async def get_all_collections(self) -> list[RaindropCollection]:
        """Root and nested collections, deduplicated by id."""
        root = await self.get_root_collections()
        try:
            children = await self.get_child_collections()
        except RaindropAuthError:
            raise
        except RaindropClientError as exc:
            logger.warning("raindrop_child_collections_unavailable", extra={"error": str(exc)})
            children = []

        seen: set[int] = set()
        collections: list[RaindropCollection] = []
        for collection in [*root, *children]:
            if collection.id not in seen:
                seen.add(collection.id)
                collections.append(collection)
        return collections

    async def get_collection(self, collection_id: int) -> RaindropCollection:
        data = await self._request(
            "GET", f"/collection/{collection_id}", operation_name="get_collection"
        )
        return RaindropCollection.model_validate(data["item"])

    async def create_collection(
        self, title: str, parent_id: int | None = None
    ) -> RaindropCollection:
        body: dict[str, Any] = {"title": title}
        if parent_id is not None:
            body["parent"] = {"$id": parent_id}
        data = await self._request(
            "POST", "/collection", json=body, operation_name="create_collection"
        )
        collection = RaindropCollection.model_validate(data["item"])
        logger.info(
            "raindrop_collection_created",
            extra={"collection_id": collection.id, "parent_id": parent_id},
        )
        return collection

    async def update_collection(
        self,
        collection_id: int,
        *,
        title: str | None = None,
        parent_id: int | None = None,
    ) -> RaindropCollection:
        body: dict[str, Any] = {}
        if title is not None:
            body["title"] = title
        if parent_id is not None:
            body["parent"] = {"$id": parent_id}
        data = await self._request(
            "PUT", f"/collection/{collection_id}", json=body, operation_name="update_collection"
        )
        return RaindropCollection.model_validate(data["item"])

    async def delete_collection(self, collection_id: int) -> None:
        await self._request(
            "DELETE", f"/collection/{collection_id}", operation_name="delete_collection"
        )

    # ------------------------------------------------------------------
    # Raindrops
    # ------------------------------------------------------------------

    async def get_raindrops(
        self, collection_id: int, page: int = 0, per_page: int | None = None
    ) -> list[Raindrop]:
        data = await self._request(
            "GET",
            f"/raindrops/{collection_id}",
            params={"page": page, "perpage": per_page or self.page_size},
            operation_name="get_raindrops",
        )
        return [Raindrop.model_validate(item) for item in data.get("items", [])]

    async def get_all_raindrops(self, collection_id: int) -> list[Raindrop]:
        """Get every raindrop in a collection (handles pagination)."""
        raindrops: list[Raindrop] = []
        page = 0
        while True:
            batch = await self.get_raindrops(collection_id, page, self.page_size)
            raindrops.extend(batch)
            if len(batch) < self.page_size:
                break
            page += 1

        logger.debug(
            "raindrop_fetched_collection",
            extra={"collection_id": collection_id, "count": len(raindrops), "pages": page + 1},
        )
        return raindrops

    async def get_raindrop(self, raindrop_id: int) -> Raindrop:
        data = await self._request("GET", f"/raindrop/{raindrop_id}", operation_name="get_raindrop")
        return Raindrop.model_validate(data["item"])

    async def create_raindrop(
        self, link: str, title: str | None = None, collection_id: int | None = None
    ) -> Raindrop:
        request = CreateRaindropRequest(link=link, title=title, collection_id=collection_id)
        data = await self._request(
            "POST", "/raindrop", json=request.to_payload(), operation_name="create_raindrop"
        )
        return Raindrop.model_validate(data["item"])

    async def create_raindrops(self, items: Sequence[CreateRaindropRequest]) -> list[Raindrop]:
        """Bulk-create raindrops in chunks; results keep the input order."""
        if not items:
            return []

        created: list[Raindrop] = []
        for chunk in _chunks(items, self.bulk_chunk_size):
            data = await self._request(
                "POST",
                "/raindrops",
                json={"items": [item.to_payload() for item in chunk]},
                operation_name="create_raindrops",
            )
            created.extend(Raindrop.model_validate(item) for item in data.get("items") or [])

        logger.info(
            "raindrop_bulk_created", extra={"requested": len(items), "created": len(created)}
        )
        return created

    async def update_raindrop(
        self,
        raindrop_id: int,
        *,
        link: str | None = None,
        title: str | None = None,
        collection_id: int | None = None,
    ) -> Raindrop:
        body: dict[str, Any] = {}
        if link is not None:
            body["link"] = link
        if title is not None:
            body["title"] = title
        if collection_id is not None:
            body["collection"] = {"$id": collection_id}
        data = await self._request(
            "PUT", f"/raindrop/{raindrop_id}", json=body, operation_name="update_raindrop"
        )
        return Raindrop.model_validate(data["item"])

    async def delete_raindrop(self, raindrop_id: int) -> None:
        await self._request("DELETE", f"/raindrop/{raindrop_id}", operation_name="delete_raindrop")

    # ------------------------------------------------------------------
    # User
    # ------------------------------------------------------------------

    async def get_user(self) -> RaindropUser:
        data = await self._request("GET", "/user", operation_name="get_user")
        return RaindropUser.model_validate(data.get("user") or {})

    async def check_token(self) -> bool:
        """Return True when the current token is accepted by the API."""
        try:
            await self.get_user()
        except RaindropAuthError:
            return False
        return True
