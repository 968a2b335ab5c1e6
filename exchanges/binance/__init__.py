"""
Binance Account Connectors

This module implements the ExchangeConnector interface for the two Binance
account kinds we track:

    - BinanceFuturesConnector:          USD-M futures account (fapi)
    - BinancePortfolioMarginConnector:  Portfolio Margin account, UM side (papi)

Both build the same snapshot:
    positions     <- positionRisk (non-zero amounts only)
                     + settled funding (fundingRate) and predicted funding
                       (premiumIndex) for each position symbol
                     + realized PnL of the last 24h (income history)
    summary       <- account balance / maintenance margin + open orders count

Structure:
    exchanges/binance/
    ├── __init__.py          # This file (connector classes)
    └── api_client.py        # REST API client with aiohttp
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

from core.config import settings
from core.exchange_interface import ExchangeConnector
from core.logging import get_logger
from core.schemas import AccountConfig, ExchangeSnapshot, Position
from core.utils.time import now_ms
from exchanges.normalize import build_summary, liquidation_change_percent, sum_realized_pnl, to_float
from .api_client import BinanceAPIClient, FUTURES_BASE_URL, PORTFOLIO_MARGIN_BASE_URL


REALIZED_PNL_LOOKBACK_MS = 24 * 60 * 60 * 1000


def normalize_position(
    raw: Dict[str, Any],
    account_name: str,
    premium: Optional[Dict[str, Any]] = None,
    settled_funding: Optional[float] = None,
    realized_pnl: float = 0.0,
) -> Optional[Position]:
    """
    Convert one positionRisk entry to a Position.

    Args:
        raw: positionRisk entry
        account_name: Owning account
        premium: premiumIndex entry of the symbol (predicted funding)
        settled_funding: Last settled funding rate (fraction)
        realized_pnl: Realized PnL of the symbol over the lookback window

    Returns:
        Position, or None for flat entries (positionAmt == 0)
    """
    amount = to_float(raw.get("positionAmt"))
    if amount == 0:
        return None

    position_side = str(raw.get("positionSide", "BOTH")).upper()
    if position_side in ("LONG", "SHORT"):
        side = position_side
    else:
        side = "LONG" if amount > 0 else "SHORT"

    mark = to_float(raw.get("markPrice"))
    liquidation = to_float(raw.get("liquidationPrice"))
    notional = abs(to_float(raw.get("notional"))) or abs(amount) * mark
    margin_mode = "ISOLATED" if str(raw.get("marginType", "")).lower() == "isolated" else "CROSS"

    predicted = to_float((premium or {}).get("lastFundingRate"))
    current = settled_funding if settled_funding is not None else predicted

    return Position(
        symbol=raw["symbol"],
        side=side,
        size=abs(amount),
        notional_value=notional,
        entry_price=to_float(raw.get("entryPrice")),
        mark_price=mark,
        liquidation_price=liquidation,
        liquidation_price_change_percent=liquidation_change_percent(liquidation, mark),
        current_funding_rate=current * 100.0,
        next_funding_rate=predicted * 100.0,
        leverage=to_float(raw.get("leverage")),
        unrealized_pnl=to_float(raw.get("unRealizedProfit")),
        realized_pnl=realized_pnl,
        margin_mode=margin_mode,
        exchange="binance",
        account_name=account_name,
    )


class BinanceConnector(ExchangeConnector):
    """
    Shared snapshot logic of the Binance connectors.

    Subclasses provide the account-specific endpoints and say which fields
    of the account payload hold the balance and maintenance margin.
    """

    exchange = "binance"
    default_base_url = FUTURES_BASE_URL
    base_currency = "USDT"

    def __init__(self, config: AccountConfig):
        super().__init__(config)
        self.client: Optional[BinanceAPIClient] = None
        self.logger = get_logger(__name__)

    # ============================================
    # Account-specific Hooks
    # ============================================

    async def _account(self) -> Dict[str, Any]:
        raise NotImplementedError

    async def _position_risk(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def _open_orders(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def _income(self, start_time: int) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def _margin_totals(self, account: Dict[str, Any]) -> Tuple[float, float]:
        """(balance, maintenance_margin) from the account payload."""
        raise NotImplementedError

    # ============================================
    # Lifecycle
    # ============================================

    async def initialize(self) -> None:
        """
        Open the HTTP session and verify the credentials.

        The account endpoint is called once; an invalid key fails
        registration instead of the first fetch.
        """
        self.logger.info(f"Initializing Binance {self.account_type} connector for {self.account_name}...")

        client = BinanceAPIClient(
            api_key=self.config.api_key,
            api_secret=self.config.api_secret.get_secret_value(),
            base_url=self.config.base_url or self.default_base_url,
            market_base_url=settings.binance_futures_base_url,
            timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            recv_window=settings.recv_window,
        )
        await client.__aenter__()
        self.client = client
        try:
            await self._account()
        except Exception:
            await self.shutdown()
            raise

        self.logger.info(f"✓ Binance {self.account_type} connector for {self.account_name} initialized")

    async def shutdown(self) -> None:
        if self.client:
            await self.client.__aexit__(None, None, None)
            self.client = None

    # ============================================
    # Snapshot
    # ============================================

    async def fetch_snapshot(self) -> ExchangeSnapshot:
        if self.client is None:
            raise RuntimeError(f"Connector for {self.account_name} is not initialized")

        since = now_ms() - REALIZED_PNL_LOOKBACK_MS
        account, risk, orders, income, premium = await asyncio.gather(
            self._account(),
            self._position_risk(),
            self._open_orders(),
            self._income(since),
            self.client.get_premium_index(),
        )

        open_entries = [r for r in risk if to_float(r.get("positionAmt")) != 0]
        symbols = sorted({r["symbol"] for r in open_entries})
        settled = await asyncio.gather(*(self.client.get_last_funding_rate(s) for s in symbols))
        settled_by_symbol = dict(zip(symbols, settled))
        realized = sum_realized_pnl(income)

        positions: List[Position] = []
        for raw in open_entries:
            symbol = raw["symbol"]
            position = normalize_position(
                raw,
                self.account_name,
                premium=premium.get(symbol),
                settled_funding=settled_by_symbol.get(symbol),
                realized_pnl=realized.get(symbol, 0.0),
            )
            if position is not None:
                positions.append(position)

        balance, maintenance = self._margin_totals(account)
        summary = build_summary(
            exchange=self.exchange,
            account_name=self.account_name,
            account_type=self.account_type,
            positions=positions,
            base_balance=balance,
            maintenance_margin=maintenance,
            open_orders_count=len(orders or []),
            base_currency=self.base_currency,
        )
        return ExchangeSnapshot(positions=positions, account_summary=summary)


class BinanceFuturesConnector(BinanceConnector):
    """USD-M futures account (fapi)."""

    account_type = "futures"
    default_base_url = FUTURES_BASE_URL

    async def _account(self) -> Dict[str, Any]:
        return await self.client.get_futures_account()

    async def _position_risk(self) -> List[Dict[str, Any]]:
        return await self.client.get_futures_position_risk()

    async def _open_orders(self) -> List[Dict[str, Any]]:
        return await self.client.get_futures_open_orders()

    async def _income(self, start_time: int) -> List[Dict[str, Any]]:
        return await self.client.get_futures_income(start_time=start_time)

    def _margin_totals(self, account: Dict[str, Any]) -> Tuple[float, float]:
        return to_float(account.get("totalMarginBalance")), to_float(account.get("totalMaintMargin"))


class BinancePortfolioMarginConnector(BinanceConnector):
    """
    Portfolio Margin account (papi), UM futures positions.

    Equity and maintenance margin are account-wide values in USD.
    """

    account_type = "portfolioMargin"
    default_base_url = PORTFOLIO_MARGIN_BASE_URL
    base_currency = "USD"

    async def _account(self) -> Dict[str, Any]:
        return await self.client.get_pm_account()

    async def _position_risk(self) -> List[Dict[str, Any]]:
        return await self.client.get_pm_position_risk()

    async def _open_orders(self) -> List[Dict[str, Any]]:
        return await self.client.get_pm_open_orders()

    async def _income(self, start_time: int) -> List[Dict[str, Any]]:
        return await self.client.get_pm_income(start_time=start_time)

    def _margin_totals(self, account: Dict[str, Any]) -> Tuple[float, float]:
        return to_float(account.get("accountEquity")), to_float(account.get("accountMaintMargin"))


__all__ = ["BinanceFuturesConnector", "BinancePortfolioMarginConnector", "normalize_position"]
