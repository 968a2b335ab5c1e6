"""
Bybit REST API Client

This module provides an async HTTP client for the Bybit v5 endpoints needed
to snapshot a Unified Trading Account:

    Private (signed):
        - GET /v5/account/wallet-balance   equity, maintenance margin
        - GET /v5/position/list            linear positions
        - GET /v5/order/realtime           open orders

    Public:
        - GET /v5/market/tickers           predicted funding rate per symbol
        - GET /v5/market/funding/history   settled funding rate

API Documentation:
    https://bybit-exchange.github.io/docs/v5/intro

Authentication:
    Headers X-BAPI-API-KEY, X-BAPI-TIMESTAMP, X-BAPI-RECV-WINDOW and
    X-BAPI-SIGN = HMAC_SHA256(api_secret, timestamp + api_key + recv_window + query_string).

Response format:
    {"retCode": 0, "retMsg": "OK", "result": {...}}; a non-zero retCode is an
    error even with HTTP 200.
"""

import hashlib
import hmac
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

from core.errors import ExchangeAPIError
from exchanges.rest_client import RESTClient


BYBIT_BASE_URL = "https://api.bybit.com"

# retCodes worth retrying (rate limits, system busy)
RETRYABLE_RET_CODES = {10002, 10006, 10016, 10018}


class BybitAPIClient(RESTClient):
    """
    Async HTTP client for a Bybit Unified Trading Account.

    Example:
        >>> async with BybitAPIClient("key", "secret") as client:
        ...     wallet = await client.get_wallet_balance()
    """

    exchange = "bybit"

    def __init__(self, api_key: str, api_secret: str, base_url: str = BYBIT_BASE_URL, **kwargs):
        super().__init__(base_url, api_key=api_key, api_secret=api_secret, **kwargs)

    # ============================================
    # Signing / Response Handling
    # ============================================

    def _sign_request(self, params: Dict[str, Any]) -> Tuple[str, Dict[str, str]]:
        if not self.api_secret:
            raise ExchangeAPIError(self.exchange, "signed request requires api_secret")

        query = urlencode(params, doseq=True)
        timestamp = str(self._timestamp_ms())
        recv_window = str(self.recv_window)
        payload = f"{timestamp}{self.api_key}{recv_window}{query}"
        signature = hmac.new(self.api_secret, payload.encode("utf-8"), hashlib.sha256).hexdigest()
        headers = {
            "X-BAPI-API-KEY": self.api_key,
            "X-BAPI-TIMESTAMP": timestamp,
            "X-BAPI-RECV-WINDOW": recv_window,
            "X-BAPI-SIGN": signature,
        }
        return query, headers

    def _unwrap(self, status: int, payload: Any) -> Any:
        if isinstance(payload, dict) and "retCode" in payload:
            code = payload.get("retCode")
            if code != 0:
                # rate limits retry like HTTP 429, anything else is final
                error_status = 429 if code in RETRYABLE_RET_CODES else (status if status >= 400 else 400)
                raise ExchangeAPIError(
                    self.exchange,
                    f"[{code}] {payload.get('retMsg', 'Unknown error')}",
                    error_status,
                )
            return payload.get("result") or {}
        return super()._unwrap(status, payload)

    async def _get_list(
        self,
        path: str,
        params: Dict[str, Any],
        signed: bool = False,
        max_pages: int = 10,
    ) -> List[Dict[str, Any]]:
        """Collect result.list across cursor pages."""
        items: List[Dict[str, Any]] = []
        params = dict(params)
        for _ in range(max_pages):
            result = await self._get(path, params, signed=signed)
            items.extend(result.get("list") or [])
            cursor = result.get("nextPageCursor")
            if not cursor:
                break
            params["cursor"] = cursor
        return items

    # ============================================
    # Account Data
    # ============================================

    async def get_wallet_balance(self, account_type: str = "UNIFIED") -> Dict[str, Any]:
        """
        Account-level wallet entry.

        Returns:
            First entry of result.list (totalEquity, totalMaintenanceMargin, ...)
        """
        result = await self._get("/v5/account/wallet-balance", {"accountType": account_type}, signed=True)
        accounts = result.get("list") or []
        if not accounts:
            raise ExchangeAPIError(self.exchange, f"no {account_type} wallet in response")
        return accounts[0]

    async def get_positions(self, category: str = "linear", settle_coin: str = "USDT") -> List[Dict[str, Any]]:
        params = {"category": category, "settleCoin": settle_coin, "limit": 200}
        return await self._get_list("/v5/position/list", params, signed=True)

    async def get_open_orders(self, category: str = "linear", settle_coin: str = "USDT") -> List[Dict[str, Any]]:
        params = {"category": category, "settleCoin": settle_coin, "limit": 50}
        return await self._get_list("/v5/order/realtime", params, signed=True)

    # ============================================
    # Market Data
    # ============================================

    async def get_tickers(self, category: str = "linear") -> Dict[str, Dict[str, Any]]:
        """Tickers keyed by symbol (fundingRate is the predicted next rate)."""
        result = await self._get("/v5/market/tickers", {"category": category})
        return {t["symbol"]: t for t in result.get("list") or [] if "symbol" in t}

    async def get_last_funding_rate(self, symbol: str, category: str = "linear") -> Optional[float]:
        """Most recently settled funding rate (fraction), or None."""
        result = await self._get(
            "/v5/market/funding/history",
            {"category": category, "symbol": symbol.upper(), "limit": 1},
        )
        history = result.get("list") or []
        if not history:
            return None
        return float(history[0].get("fundingRate", 0.0))
