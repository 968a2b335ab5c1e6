"""
Normalization Helpers

Exchange payloads carry numbers as strings, sometimes empty. These helpers
turn them into floats and derive the account-level figures every connector
reports the same way:

    liquidation_price_change_percent = (liquidation - mark) / mark * 100
    account_leverage                 = total_notional / balance
    liquidation_buffer               = 100 - margin_ratio
"""

from typing import Any, Dict, Iterable, List

from core.schemas import AccountSummary, Position


def to_float(value: Any, default: float = 0.0) -> float:
    """
    Example:
        >>> to_float("1.5"), to_float(""), to_float(None, 2.0)
        (1.5, 0.0, 2.0)
    """
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def liquidation_change_percent(liquidation_price: float, mark_price: float) -> float:
    """Percent move from mark to liquidation price (0 when either is unknown)."""
    if liquidation_price <= 0 or mark_price <= 0:
        return 0.0
    return (liquidation_price - mark_price) / mark_price * 100.0


def sum_realized_pnl(income: Iterable[Dict[str, Any]]) -> Dict[str, float]:
    """Realized PnL per symbol from income-history records."""
    totals: Dict[str, float] = {}
    for item in income or []:
        symbol = item.get("symbol")
        if not symbol:
            continue
        totals[symbol] = totals.get(symbol, 0.0) + to_float(item.get("income"))
    return totals


def build_summary(
    exchange: str,
    account_name: str,
    account_type: str,
    positions: List[Position],
    base_balance: float,
    maintenance_margin: float,
    open_orders_count: int,
    base_currency: str = "USDT",
) -> AccountSummary:
    """
    Account summary from normalized positions and the account's margin totals.

    Args:
        base_balance: Margin balance / equity in base currency
        maintenance_margin: Total maintenance margin in base currency
    """
    total_notional = sum(p.notional_value for p in positions)
    leverage = total_notional / base_balance if base_balance > 0 else 0.0
    margin_ratio = maintenance_margin / base_balance * 100.0 if base_balance > 0 else 0.0

    return AccountSummary(
        exchange=exchange,
        account_name=account_name,
        account_type=account_type,
        base_currency=base_currency,
        base_balance=base_balance,
        total_notional_value=total_notional,
        account_leverage=leverage,
        open_positions_count=len(positions),
        open_orders_count=open_orders_count,
        account_margin_ratio=margin_ratio,
        liquidation_buffer=100.0 - margin_ratio if base_balance > 0 else 0.0,
    )
