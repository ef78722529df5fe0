"""Remote source contract and base HTTP client with rate limiting and retries."""

import asyncio
import aiohttp
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
import logging

from .errors import TransportError, DecodingError
from .models import Item

logger = logging.getLogger(__name__)

# Statuses worth another attempt
RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


@dataclass
class RateLimitConfig:
    """Rate limiting configuration."""

    requests_per_minute: int = 60
    backoff_factor: float = 1.5  # Exponential backoff multiplier


@dataclass
class APIClientConfig:
    """Configuration for API clients."""

    base_url: str
    api_key: Optional[str] = None
    timeout: int = 30
    max_retries: int = 3
    retry_delay: float = 1.0
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class APIResponse:
    """Wrapper for API responses with metadata."""

    data: Any
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    response_time: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_success(self) -> bool:
        """Check if response was successful."""
        return 200 <= self.status_code < 300


class RemoteSource(ABC):
    """Read-only source of full item snapshots.

    A fetch either returns the complete snapshot or raises; there are no
    partial results.
    """

    name = "remote"

    @abstractmethod
    async def fetch_snapshot(self, limit: int) -> List[Item]:
        """Fetch the current snapshot of up to ``limit`` items.

        Raises:
            TransportError: If the source cannot be reached or answers with an error
            DecodingError: If the payload is malformed
        """

    async def start(self):
        """Acquire network resources."""

    async def stop(self):
        """Release network resources."""

    async def health_check(self) -> bool:
        """Check whether the source is reachable."""
        return True


class RateLimiter:
    """Rate limiter for API requests."""

    def __init__(self, config: RateLimitConfig):
        """Initialize rate limiter.

        Args:
            config: Rate limiting configuration
        """
        self.config = config
        self._request_times: List[float] = []
        self._lock = asyncio.Lock()

    async def acquire(self) -> bool:
        """Acquire permission to make a request.

        Returns:
            True if request is allowed, False if rate limited
        """
        async with self._lock:
            now = time.time()

            # Clean up old request times
            minute_ago = now - 60
            self._request_times = [t for t in self._request_times if t > minute_ago]

            if len(self._request_times) >= self.config.requests_per_minute:
                return False

            self._request_times.append(now)
            return True

    async def wait_if_needed(self) -> float:
        """Wait if rate limited.

        Returns:
            Time waited in seconds
        """
        if await self.acquire():
            return 0.0

        now = time.time()
        oldest_request = min(self._request_times) if self._request_times else now
        wait_time = 60 - (now - oldest_request)

        if wait_time > 0:
            logger.info(f"Rate limited, waiting {wait_time:.2f} seconds")
            await asyncio.sleep(wait_time)
            return wait_time

        return 0.0


class BaseAPIClient(RemoteSource):
    """Base class for HTTP remote sources."""

    def __init__(self, config: APIClientConfig, name: str):
        """Initialize API client.

        Args:
            config: API client configuration
            name: Source name used in logs and stats
        """
        self.config = config
        self.name = name
        self.rate_limiter = RateLimiter(config.rate_limit)
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.stop()

    async def start(self):
        """Start the API client session."""
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers=self.config.headers
            )
            logger.info(f"Started {self.name} API client")

    async def stop(self):
        """Stop the API client session."""
        if self._session:
            await self._session.close()
            self._session = None
            logger.info(f"Stopped {self.name} API client")

    async def _make_request(self, method: str, endpoint: str,
                            params: Optional[Dict[str, Any]] = None,
                            headers: Optional[Dict[str, str]] = None) -> APIResponse:
        """Make HTTP request with rate limiting and retries.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint
            params: Query parameters
            headers: Additional headers

        Returns:
            APIResponse with response data and metadata

        Raises:
            TransportError: If every attempt failed
        """
        if not self._session:
            await self.start()

        await self.rate_limiter.wait_if_needed()

        url = f"{self.config.base_url.rstrip('/')}/{endpoint.lstrip('/')}"
        request_headers = {**self.config.headers}
        if headers:
            request_headers.update(headers)

        if self.config.api_key:
            request_headers.update(self._get_auth_headers())

        start_time = time.time()
        last_exception: Optional[BaseException] = None
        last_response: Optional[APIResponse] = None

        for attempt in range(self.config.max_retries + 1):
            try:
                async with self._session.request(
                    method=method,
                    url=url,
                    params=params,
                    headers=request_headers
                ) as response:
                    response_time = time.time() - start_time

                    if response.content_type == 'application/json':
                        try:
                            data = await response.json()
                        except ValueError as e:
                            raise DecodingError(f"Invalid JSON from {url}", e) from e
                    else:
                        data = await response.text()

                    api_response = APIResponse(
                        data=data,
                        status_code=response.status,
                        headers=dict(response.headers),
                        response_time=response_time,
                        timestamp=datetime.now(timezone.utc)
                    )

                    logger.debug(f"{method} {url} -> {response.status} ({response_time:.3f}s)")

                    if response.status not in RETRYABLE_STATUSES:
                        return api_response

                    last_response = api_response
                    last_exception = None
                    logger.warning(f"Request attempt {attempt + 1} got HTTP {response.status}")

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_exception = e
                last_response = None
                logger.warning(f"Request attempt {attempt + 1} failed: {e}")

            if attempt < self.config.max_retries:
                # Exponential backoff
                delay = self.config.retry_delay * (self.config.rate_limit.backoff_factor ** attempt)
                await asyncio.sleep(delay)

        if last_response is not None:
            return last_response

        raise TransportError(
            f"{method} {url} failed after {self.config.max_retries + 1} attempts",
            last_exception
        )

    @abstractmethod
    def _get_auth_headers(self) -> Dict[str, str]:
        """Get authentication headers for API requests."""

    async def health_check(self) -> bool:
        """Check if API is healthy and accessible.

        Returns:
            True if API is healthy, False otherwise
        """
        try:
            response = await self._make_request("GET", "ping")
            return response.is_success
        except TransportError as e:
            logger.error(f"Health check failed for {self.name}: {e}")
            return False
