"""
Binance REST API Client

This module provides an async HTTP client for the Binance account endpoints
needed to build position snapshots, for both account kinds we support:

    USD-M Futures (https://fapi.binance.com):
        - GET /fapi/v2/account          balances, margin totals
        - GET /fapi/v2/positionRisk     positions
        - GET /fapi/v1/openOrders       resting orders
        - GET /fapi/v1/income           realized PnL history

    Portfolio Margin (https://papi.binance.com):
        - GET /papi/v1/account          unified equity / maintenance margin
        - GET /papi/v1/um/positionRisk  UM positions
        - GET /papi/v1/um/openOrders    UM resting orders
        - GET /papi/v1/um/income        UM realized PnL history

    Public market data (always on the futures host):
        - GET /fapi/v1/premiumIndex     predicted funding rate per symbol
        - GET /fapi/v1/fundingRate      settled funding rate history

API Documentation:
    https://developers.binance.com/docs/derivatives/usds-margined-futures
    https://developers.binance.com/docs/derivatives/portfolio-margin

Authentication:
    Signed endpoints take `timestamp` and `recvWindow` query parameters and
    a `signature` = HMAC_SHA256(api_secret, query_string). The API key goes
    in the X-MBX-APIKEY header.
"""

import hashlib
import hmac
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

from core.errors import ExchangeAPIError
from exchanges.rest_client import RESTClient


FUTURES_BASE_URL = "https://fapi.binance.com"
PORTFOLIO_MARGIN_BASE_URL = "https://papi.binance.com"


class BinanceAPIClient(RESTClient):
    """
    Async HTTP client for Binance futures / portfolio margin accounts.

    Attributes:
        base_url: Account API host (fapi or papi)
        market_base_url: Host for public futures market data

    Example:
        >>> async with BinanceAPIClient("key", "secret") as client:
        ...     positions = await client.get_futures_position_risk()
    """

    exchange = "binance"

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        base_url: str = FUTURES_BASE_URL,
        market_base_url: str = FUTURES_BASE_URL,
        **kwargs,
    ):
        super().__init__(base_url, api_key=api_key, api_secret=api_secret, **kwargs)
        self.market_base_url = market_base_url.rstrip("/")

    # ============================================
    # Signing / Response Handling
    # ============================================

    def _sign_request(self, params: Dict[str, Any]) -> Tuple[str, Dict[str, str]]:
        if not self.api_secret:
            raise ExchangeAPIError(self.exchange, "signed request requires api_secret")

        params.setdefault("recvWindow", self.recv_window)
        params["timestamp"] = self._timestamp_ms()
        query = urlencode(params, doseq=True)
        signature = hmac.new(self.api_secret, query.encode("utf-8"), hashlib.sha256).hexdigest()
        return f"{query}&signature={signature}", {"X-MBX-APIKEY": self.api_key}

    def _unwrap(self, status: int, payload: Any) -> Any:
        # errors look like {"code": -2015, "msg": "Invalid API-key, IP, or permissions for action."}
        if isinstance(payload, dict) and "code" in payload and "msg" in payload and payload.get("code") not in (0, 200):
            raise ExchangeAPIError(
                self.exchange,
                f"[{payload.get('code')}] {payload.get('msg')}",
                status if status >= 400 else 400,
            )
        return super()._unwrap(status, payload)

    # ============================================
    # USD-M Futures Account
    # ============================================

    async def get_futures_account(self) -> Dict[str, Any]:
        return await self._get("/fapi/v2/account", signed=True)

    async def get_futures_position_risk(self) -> List[Dict[str, Any]]:
        return await self._get("/fapi/v2/positionRisk", signed=True)

    async def get_futures_open_orders(self) -> List[Dict[str, Any]]:
        return await self._get("/fapi/v1/openOrders", signed=True)

    async def get_futures_income(
        self,
        income_type: str = "REALIZED_PNL",
        start_time: Optional[int] = None,
        limit: int = 1000,
    ) -> List[Dict[str, Any]]:
        params = {"incomeType": income_type, "startTime": start_time, "limit": limit}
        return await self._get("/fapi/v1/income", params, signed=True)

    # ============================================
    # Portfolio Margin Account
    # ============================================

    async def get_pm_account(self) -> Dict[str, Any]:
        return await self._get("/papi/v1/account", signed=True)

    async def get_pm_position_risk(self) -> List[Dict[str, Any]]:
        return await self._get("/papi/v1/um/positionRisk", signed=True)

    async def get_pm_open_orders(self) -> List[Dict[str, Any]]:
        return await self._get("/papi/v1/um/openOrders", signed=True)

    async def get_pm_income(
        self,
        income_type: str = "REALIZED_PNL",
        start_time: Optional[int] = None,
        limit: int = 1000,
    ) -> List[Dict[str, Any]]:
        params = {"incomeType": income_type, "startTime": start_time, "limit": limit}
        return await self._get("/papi/v1/um/income", params, signed=True)

    # ============================================
    # Public Market Data
    # ============================================

    async def get_premium_index(self) -> Dict[str, Dict[str, Any]]:
        """
        Mark price and predicted funding for every USD-M symbol.

        Returns:
            Dict[str, dict]: premiumIndex entries keyed by symbol
        """
        data = await self._get("/fapi/v1/premiumIndex", base_url=self.market_base_url)
        if isinstance(data, dict):
            data = [data]
        return {item["symbol"]: item for item in data if isinstance(item, dict) and "symbol" in item}

    async def get_last_funding_rate(self, symbol: str) -> Optional[float]:
        """
        Most recently settled funding rate of a symbol (fraction, not percent).

        Returns:
            float or None if the symbol has no funding history
        """
        data = await self._get(
            "/fapi/v1/fundingRate",
            {"symbol": symbol.upper(), "limit": 1},
            base_url=self.market_base_url,
        )
        if not data:
            return None
        return float(data[-1].get("fundingRate", 0.0))
