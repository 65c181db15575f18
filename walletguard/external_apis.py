import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception
from typing import Dict, List, Optional
import structlog
from pydantic import ValidationError

from .cache import CacheService
from .config import settings
from .error_handling import ExternalAPIError
from .models import TokenHolding, TokenPrice, Transaction

logger = structlog.get_logger()

# Raised while mapping a well-formed JSON body onto our models
MAPPING_ERRORS = (KeyError, TypeError, AttributeError, ValidationError)


def _is_retryable(error: BaseException) -> bool:
    """Transport failures and 5xx responses are worth another attempt"""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    return isinstance(error, httpx.RequestError)


def _malformed_response(endpoint: str, error: Exception) -> ExternalAPIError:
    logger.error(f"Malformed payload from {endpoint}", error=str(error), error_type=type(error).__name__)
    return ExternalAPIError("Malformed response from data provider")


class BaseAPIClient:
    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict] = None,
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.default_headers = headers or {}
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.default_headers,
                timeout=self.timeout,
                limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
                transport=self._transport,
            )
        return self.client

    async def aclose(self):
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    async def _make_request(self, method: str, endpoint: str, **kwargs) -> dict:
        """Make HTTP request with retry logic"""
        client = self._ensure_client()

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.backoff, max=10),
                retry=retry_if_exception(_is_retryable),
                reraise=True,
            ):
                with attempt:
                    response = await client.request(method, endpoint, **kwargs)
                    response.raise_for_status()
                    return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error {e.response.status_code} for {method} {endpoint}",
                         error=str(e), status_code=e.response.status_code)
            raise ExternalAPIError(f"API request failed: {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error(f"Request error for {method} {endpoint}", error=str(e))
            raise ExternalAPIError(f"Network error: {str(e)}") from e
        except ValueError as e:
            logger.error(f"Invalid JSON from {method} {endpoint}", error=str(e))
            raise ExternalAPIError("Malformed response from data provider") from e


class DataProvider(BaseAPIClient):
    """Wallet and market data client, memoized through the shared cache.

    Balances and prices are cached for a short TTL; transactions are always
    fetched fresh because the transaction alert compares timestamps.
    """

    def __init__(self, cache: CacheService, base_url: Optional[str] = None, **kwargs):
        kwargs.setdefault("timeout", settings.DATA_PROVIDER_TIMEOUT)
        kwargs.setdefault("max_attempts", settings.DATA_PROVIDER_MAX_RETRIES)
        kwargs.setdefault("backoff", settings.DATA_PROVIDER_RETRY_BACKOFF)
        super().__init__(
            base_url or settings.DATA_PROVIDER_URL,
            headers={"Content-Type": "application/json"},
            **kwargs
        )
        self.cache = cache

    async def get_token_balances(self, address: str) -> List[TokenHolding]:
        """Get token balances for a wallet"""
        return await self.cache.get_or_set(
            f"balances:{address.lower()}",
            lambda: self._fetch_token_balances(address),
            settings.BALANCE_CACHE_TTL,
        )

    async def _fetch_token_balances(self, address: str) -> List[TokenHolding]:
        endpoint = f"/token-balances/{address}"
        data = await self._make_request("GET", endpoint)
        try:
            return [
                TokenHolding(
                    symbol=token["symbol"],
                    name=token.get("name"),
                    balance=token.get("balance") or 0,
                    value_usd=token.get("usdValue") or 0,
                    contract_address=token.get("contractAddress"),
                    decimals=token.get("decimals"),
                )
                for token in data.get("tokens", [])
            ]
        except MAPPING_ERRORS as e:
            raise _malformed_response(endpoint, e) from e

    async def get_transactions(self, address: str, limit: int = 20, offset: int = 0) -> List[Transaction]:
        """Get transaction history, newest first"""
        endpoint = f"/transactions/{address}"
        data = await self._make_request("GET", endpoint, params={"limit": limit, "offset": offset})
        try:
            return [Transaction.model_validate(tx) for tx in data.get("transactions", [])]
        except MAPPING_ERRORS as e:
            raise _malformed_response(endpoint, e) from e

    async def get_token_price(self, symbol: str) -> TokenPrice:
        """Get current token price and 24h market data"""
        symbol = symbol.upper()
        return await self.cache.get_or_set(
            f"price:{symbol}",
            lambda: self._fetch_token_price(symbol),
            settings.PRICE_CACHE_TTL,
        )

    async def _fetch_token_price(self, symbol: str) -> TokenPrice:
        endpoint = f"/prices/{symbol}"
        data = await self._make_request("GET", endpoint)
        try:
            price = data.get("price")
            change_24h = data.get("change24h") or 0.0
            market_cap = data.get("marketCap")
            volume_24h = data.get("volume24h")
        except MAPPING_ERRORS as e:
            raise _malformed_response(endpoint, e) from e

        if price is None:
            raise ExternalAPIError(f"No price available for {symbol}")

        try:
            return TokenPrice(
                symbol=symbol,
                current=price,
                change_24h=change_24h,
                market_cap=market_cap,
                volume_24h=volume_24h,
            )
        except MAPPING_ERRORS as e:
            raise _malformed_response(endpoint, e) from e

    async def health_check(self) -> str:
        try:
            await self._make_request("GET", "/health")
            return "healthy"
        except ExternalAPIError:
            return "unhealthy"
