"""
Bybit Account Connector

This module implements the ExchangeConnector interface for Bybit Unified
Trading Accounts (USDT linear positions).

Snapshot sources:
    positions  <- /v5/position/list (size > 0 only)
                  + settled funding (/v5/market/funding/history)
                  + predicted funding (/v5/market/tickers)
    summary    <- /v5/account/wallet-balance (totalEquity, totalMaintenanceMargin)
                  + /v5/order/realtime count

Structure:
    exchanges/bybit/
    ├── __init__.py          # This file (BybitUnifiedConnector)
    └── api_client.py        # REST API client with aiohttp
"""

import asyncio
from typing import Any, Dict, List, Optional

from core.config import settings
from core.exchange_interface import ExchangeConnector
from core.logging import get_logger
from core.schemas import AccountConfig, ExchangeSnapshot, Position
from exchanges.normalize import build_summary, liquidation_change_percent, to_float
from .api_client import BybitAPIClient, BYBIT_BASE_URL


def normalize_position(
    raw: Dict[str, Any],
    account_name: str,
    ticker: Optional[Dict[str, Any]] = None,
    settled_funding: Optional[float] = None,
) -> Optional[Position]:
    """
    Convert one /v5/position/list entry to a Position.

    Returns:
        Position, or None for empty slots (size == 0 or no side)
    """
    size = to_float(raw.get("size"))
    side_raw = raw.get("side") or ""
    if size == 0 or side_raw not in ("Buy", "Sell"):
        return None

    mark = to_float(raw.get("markPrice"))
    liquidation = to_float(raw.get("liqPrice"))
    notional = to_float(raw.get("positionValue")) or size * mark

    predicted = to_float((ticker or {}).get("fundingRate"))
    current = settled_funding if settled_funding is not None else predicted

    return Position(
        symbol=raw["symbol"],
        side="LONG" if side_raw == "Buy" else "SHORT",
        size=size,
        notional_value=abs(notional),
        entry_price=to_float(raw.get("avgPrice")),
        mark_price=mark,
        liquidation_price=liquidation,
        liquidation_price_change_percent=liquidation_change_percent(liquidation, mark),
        current_funding_rate=current * 100.0,
        next_funding_rate=predicted * 100.0,
        leverage=to_float(raw.get("leverage")),
        unrealized_pnl=to_float(raw.get("unrealisedPnl")),
        realized_pnl=to_float(raw.get("cumRealisedPnl")),
        margin_mode="ISOLATED" if str(raw.get("tradeMode", "0")) == "1" else "CROSS",
        exchange="bybit",
        account_name=account_name,
    )


class BybitUnifiedConnector(ExchangeConnector):
    """
    Bybit Unified Trading Account connector.

    Example:
        >>> connector = BybitUnifiedConnector(config)
        >>> await connector.initialize()
        >>> snapshot = await connector.fetch_snapshot()
        >>> await connector.shutdown()
    """

    exchange = "bybit"
    account_type = "unified"
    base_currency = "USD"

    def __init__(self, config: AccountConfig):
        super().__init__(config)
        self.client: Optional[BybitAPIClient] = None
        self.logger = get_logger(__name__)

    async def initialize(self) -> None:
        """Open the HTTP session and verify the credentials with a wallet query."""
        self.logger.info(f"Initializing Bybit unified connector for {self.account_name}...")

        client = BybitAPIClient(
            api_key=self.config.api_key,
            api_secret=self.config.api_secret.get_secret_value(),
            base_url=self.config.base_url or BYBIT_BASE_URL,
            timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            recv_window=settings.recv_window,
        )
        await client.__aenter__()
        self.client = client
        try:
            await client.get_wallet_balance()
        except Exception:
            await self.shutdown()
            raise

        self.logger.info(f"✓ Bybit unified connector for {self.account_name} initialized")

    async def shutdown(self) -> None:
        if self.client:
            await self.client.__aexit__(None, None, None)
            self.client = None

    async def fetch_snapshot(self) -> ExchangeSnapshot:
        if self.client is None:
            raise RuntimeError(f"Connector for {self.account_name} is not initialized")

        wallet, raw_positions, orders, tickers = await asyncio.gather(
            self.client.get_wallet_balance(),
            self.client.get_positions(),
            self.client.get_open_orders(),
            self.client.get_tickers(),
        )

        open_entries = [p for p in raw_positions if to_float(p.get("size")) > 0]
        symbols = sorted({p["symbol"] for p in open_entries})
        settled = await asyncio.gather(*(self.client.get_last_funding_rate(s) for s in symbols))
        settled_by_symbol = dict(zip(symbols, settled))

        positions: List[Position] = []
        for raw in open_entries:
            position = normalize_position(
                raw,
                self.account_name,
                ticker=tickers.get(raw["symbol"]),
                settled_funding=settled_by_symbol.get(raw["symbol"]),
            )
            if position is not None:
                positions.append(position)

        summary = build_summary(
            exchange=self.exchange,
            account_name=self.account_name,
            account_type=self.account_type,
            positions=positions,
            base_balance=to_float(wallet.get("totalEquity")),
            maintenance_margin=to_float(wallet.get("totalMaintenanceMargin")),
            open_orders_count=len(orders),
            base_currency=self.base_currency,
        )
        return ExchangeSnapshot(positions=positions, account_summary=summary)


__all__ = ["BybitUnifiedConnector", "normalize_position"]
