"""
Async REST Client Base

Shared HTTP plumbing for the exchange API clients:
- aiohttp ClientSession lifecycle (async context manager)
- GET requests with retry and exponential backoff on network errors,
  HTTP 429 and 5xx responses
- Immediate failure on other 4xx responses (bad key, bad signature, ...)
  since retrying them cannot succeed

Subclasses implement signing (_sign_request) and response unwrapping
(_unwrap). Every final failure is raised as ExchangeAPIError.

Usage:
    async with BinanceAPIClient(api_key, api_secret) as client:
        account = await client.get_futures_account()
"""

import asyncio
import time
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import aiohttp

from core.errors import ExchangeAPIError
from core.logging import get_logger, log_api_request, log_api_response


class RESTClient:
    """
    Base async HTTP client for exchange REST APIs.

    Attributes:
        exchange: Exchange name used in logs and errors
        base_url: REST host (e.g., "https://fapi.binance.com")
        session: aiohttp ClientSession (created in __aenter__)
    """

    exchange = "exchange"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        api_secret: str = "",
        timeout: float = 10.0,
        max_retries: int = 3,
        recv_window: int = 5000,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key or ""
        self.api_secret = (api_secret or "").encode("utf-8")
        self.timeout = float(timeout)
        self.max_retries = max(1, int(max_retries))
        self.recv_window = int(recv_window)
        self.session: Optional[aiohttp.ClientSession] = None
        self.logger = get_logger(f"exchanges.{self.exchange}.api_client")

    # ============================================
    # Context Manager for Session Management
    # ============================================

    async def __aenter__(self):
        self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        self.logger.debug(f"{self.__class__.__name__} session created ({self.base_url})")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.debug(f"{self.__class__.__name__} session closed")

    # ============================================
    # Hooks
    # ============================================

    def _sign_request(self, params: Dict[str, Any]) -> Tuple[str, Dict[str, str]]:
        """Return (query_string, headers) for a signed request."""
        raise NotImplementedError

    def _unwrap(self, status: int, payload: Any) -> Any:
        """
        Check an API-level error envelope and return the useful payload.

        HTTP 4xx responses reaching this hook must raise ExchangeAPIError
        carrying the status, which makes them final (no retry).
        """
        if status >= 400:
            raise ExchangeAPIError(self.exchange, str(payload)[:200], status)
        return payload

    @staticmethod
    def _timestamp_ms() -> int:
        return int(time.time() * 1000)

    # ============================================
    # HTTP Request Handler with Retry Logic
    # ============================================

    async def _get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        signed: bool = False,
        base_url: Optional[str] = None,
    ) -> Any:
        """
        GET an endpoint with retry logic.

        Args:
            path: API path (e.g., "/fapi/v2/account")
            params: Query parameters
            signed: Add timestamp + signature (re-signed on every attempt)
            base_url: Override the client's host (public market data)

        Returns:
            Unwrapped JSON payload

        Raises:
            ExchangeAPIError: On non-retryable errors or after all retries fail
            RuntimeError: If the session is not initialized
        """
        if self.session is None:
            raise RuntimeError(f"{self.__class__.__name__} session not initialized; use 'async with'")

        params = {k: v for k, v in (params or {}).items() if v is not None}
        host = (base_url or self.base_url).rstrip("/")
        log_api_request(self.exchange, path, params)

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            if signed:
                query, headers = self._sign_request(dict(params))
            else:
                query, headers = urlencode(params), {}
            url = f"{host}{path}?{query}" if query else f"{host}{path}"

            started = time.monotonic()
            try:
                async with self.session.get(url, headers=headers) as response:
                    log_api_response(self.exchange, path, response.status, time.monotonic() - started)
                    if response.status == 429 or response.status >= 500:
                        text = await response.text()
                        raise ExchangeAPIError(self.exchange, text[:200] or "rate limited / server error", response.status)
                    try:
                        payload = await response.json(content_type=None)
                    except ValueError:
                        text = await response.text()
                        raise ExchangeAPIError(self.exchange, f"invalid JSON: {text[:200]}", response.status)
                    return self._unwrap(response.status, payload)
            except ExchangeAPIError as e:
                if e.status is not None and 400 <= e.status < 500 and e.status != 429:
                    raise
                last_error = e
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = ExchangeAPIError(self.exchange, f"{e.__class__.__name__}: {e}")

            if attempt < self.max_retries - 1:
                wait_time = 2 ** attempt
                self.logger.warning(
                    f"{self.exchange} request {path} failed (attempt {attempt + 1}), retrying in {wait_time}s: {last_error}"
                )
                await asyncio.sleep(wait_time)

        self.logger.error(f"{self.exchange} request {path} failed after {self.max_retries} attempts: {last_error}")
        raise last_error
