"""CoinGecko markets client."""

from typing import Dict, List, Optional
import logging

from ..api_client import BaseAPIClient, APIClientConfig, RateLimitConfig
from ..errors import TransportError, DecodingError
from ..models import Item, decode_items

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.coingecko.com/api/v3"


class CoinGeckoClient(BaseAPIClient):
    """Fetches market snapshots from the CoinGecko ``coins/markets`` endpoint."""

    def __init__(self, api_key: Optional[str] = None, currency: str = "usd",
                 base_url: str = DEFAULT_BASE_URL, timeout: int = 30,
                 max_retries: int = 3, retry_delay: float = 1.0):
        """Initialize CoinGecko client.

        Args:
            api_key: Optional CoinGecko demo API key for higher rate limits
            currency: Quote currency for prices
            base_url: API root
            timeout: Total request timeout in seconds
            max_retries: Retries after the first attempt
            retry_delay: Initial backoff delay in seconds
        """
        # CoinGecko rate limits (free tier)
        rate_limit = RateLimitConfig(
            requests_per_minute=50 if api_key else 10
        )

        config = APIClientConfig(
            base_url=base_url,
            api_key=api_key,
            timeout=timeout,
            max_retries=max_retries,
            retry_delay=retry_delay,
            rate_limit=rate_limit,
            headers={
                "Accept": "application/json",
                "User-Agent": "MarketMirror/0.1"
            }
        )

        super().__init__(config, "coingecko")
        self.currency = currency

    def _get_auth_headers(self) -> Dict[str, str]:
        """Get authentication headers for CoinGecko API."""
        if self.config.api_key:
            return {"x-cg-demo-api-key": self.config.api_key}
        return {}

    async def fetch_snapshot(self, limit: int) -> List[Item]:
        """Fetch the top ``limit`` markets by market cap.

        Args:
            limit: Maximum number of items to return

        Returns:
            Decoded items in the order returned by CoinGecko

        Raises:
            TransportError: On network failure or a non-2xx response
            DecodingError: If the response body is not a valid market list
        """
        if limit < 1:
            raise ValueError(f"Snapshot limit must be positive, got {limit}")

        params = {
            "vs_currency": self.currency,
            "order": "market_cap_desc",
            "per_page": str(limit),
            "page": "1",
        }

        response = await self._make_request("GET", "coins/markets", params=params)

        if not response.is_success:
            raise TransportError(
                f"CoinGecko returned HTTP {response.status_code}",
                status_code=response.status_code
            )

        items = decode_items(response.data)
        if len(items) > limit:
            raise DecodingError(f"CoinGecko returned {len(items)} items for a limit of {limit}")

        logger.info(f"Fetched {len(items)} markets from CoinGecko")
        return items

    async def health_check(self) -> bool:
        """Check if CoinGecko API is healthy."""
        try:
            response = await self._make_request("GET", "ping")
            return response.is_success and isinstance(response.data, dict) and "gecko_says" in response.data
        except (TransportError, DecodingError) as e:
            logger.error(f"CoinGecko health check failed: {e}")
            return False
