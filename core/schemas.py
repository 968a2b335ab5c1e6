"""
Normalized Data Schemas

This module defines the Pydantic models shared by the account core, the
exchange connectors and the HTTP layer.

Key Principle:
    Regardless of which exchange or account type the data comes from
    (Binance futures, Binance portfolio margin, Bybit unified), it gets
    normalized into these schemas. Consumers (the visualization backend)
    work with one structure.

Models:
    - AccountKind: Supported (exchange, account_type) combinations
    - AccountConfig: Identity and credentials of one account (immutable)
    - Position: One open position
    - AccountSummary: Balance / leverage / margin overview of one account
    - ExchangeSnapshot: Positions + summary returned by one successful fetch
    - CacheView: Copy of the snapshot cache handed to consumers
    - AccountHealth: Health record of one account

Percent-valued fields (funding rates, margin ratio, liquidation buffer,
liquidation price change) are expressed in percent, not fractions.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from core.errors import UnsupportedAccountError


# ============================================
# Account Identity
# ============================================

class AccountKind(str, Enum):
    """
    Supported (exchange, account_type) combinations.

    Each member maps to exactly one connector implementation. Resolving a
    config to a kind is how unsupported combinations get rejected at
    registration instead of at first use.
    """

    BINANCE_FUTURES = "binance:futures"
    BINANCE_PORTFOLIO_MARGIN = "binance:portfolioMargin"
    BYBIT_UNIFIED = "bybit:unified"

    @property
    def exchange(self) -> str:
        return self.value.split(":", 1)[0]

    @property
    def account_type(self) -> str:
        return self.value.split(":", 1)[1]

    @classmethod
    def resolve(cls, exchange: str, account_type: str) -> "AccountKind":
        """
        Look up the kind for an (exchange, account_type) pair.

        Raises:
            UnsupportedAccountError: If no connector handles the pair

        Example:
            >>> AccountKind.resolve("binance", "portfolioMargin")
            <AccountKind.BINANCE_PORTFOLIO_MARGIN: 'binance:portfolioMargin'>
        """
        try:
            return cls(f"{exchange.lower()}:{account_type}")
        except ValueError:
            raise UnsupportedAccountError(exchange, account_type) from None


class AccountConfig(BaseModel):
    """
    Identity and connection parameters for one trading account.

    Immutable after construction. The name is the global identity key used
    by the registry, the fetch state, the cache and the health report.

    Accepts both snake_case and the camelCase keys used by the account JSON
    (``accountType``, ``apiKey``, ``apiSecret``, ``baseUrl``).

    Example:
        >>> cfg = AccountConfig(
        ...     name="SF1",
        ...     exchange="binance",
        ...     accountType="futures",
        ...     apiKey="key",
        ...     apiSecret="secret",
        ... )
        >>> cfg.kind
        <AccountKind.BINANCE_FUTURES: 'binance:futures'>
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1, description="Unique account name")
    exchange: str = Field(..., description="Exchange identifier (lowercase)", examples=["binance", "bybit"])
    account_type: str = Field(
        ...,
        alias="accountType",
        description="Account variant on the exchange",
        examples=["futures", "portfolioMargin", "unified"],
    )
    api_key: str = Field(default="", alias="apiKey")
    api_secret: SecretStr = Field(default=SecretStr(""), alias="apiSecret")
    base_url: Optional[str] = Field(default=None, alias="baseUrl", description="REST base URL override")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Strip surrounding whitespace from the account name"""
        v = v.strip()
        if not v:
            raise ValueError("Account name cannot be blank")
        return v

    @field_validator("exchange")
    @classmethod
    def validate_exchange(cls, v: str) -> str:
        """Ensure exchange is lowercase"""
        return v.strip().lower()

    @property
    def kind(self) -> AccountKind:
        """Resolved account kind (raises UnsupportedAccountError)."""
        return AccountKind.resolve(self.exchange, self.account_type)

    def public_view(self) -> Dict[str, Any]:
        """Configuration without credentials, safe to expose to consumers."""
        return {
            "name": self.name,
            "exchange": self.exchange,
            "account_type": self.account_type,
            "base_url": self.base_url,
        }


# ============================================
# Position / Account Data
# ============================================

class Position(BaseModel):
    """
    One open position, normalized across exchanges.

    Attributes:
        symbol: Contract symbol (e.g., "BTCUSDT")
        side: LONG or SHORT
        size: Absolute position size in base asset
        notional_value: Absolute position value in the account's base currency
        entry_price / mark_price / liquidation_price: Prices (0 if unknown)
        liquidation_price_change_percent: Move from mark to liquidation, in percent
        current_funding_rate: Last settled funding rate, in percent
        next_funding_rate: Predicted next funding rate, in percent
        leverage: Position leverage
        unrealized_pnl / realized_pnl: PnL in base currency
        margin_mode: CROSS or ISOLATED
        exchange / account_name: Owning account, kept for traceability
    """

    symbol: str
    side: Literal["LONG", "SHORT"]
    size: float = Field(..., ge=0)
    notional_value: float = Field(..., ge=0)
    entry_price: float = 0.0
    mark_price: float = 0.0
    liquidation_price: float = 0.0
    liquidation_price_change_percent: float = 0.0
    current_funding_rate: float = 0.0
    next_funding_rate: float = 0.0
    leverage: float = 0.0
    unrealized_pnl: float = 0.0
    realized_pnl: float = 0.0
    margin_mode: Literal["CROSS", "ISOLATED"] = "CROSS"
    exchange: str
    account_name: str

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        """Ensure symbol is uppercase"""
        return v.upper()


class AccountSummary(BaseModel):
    """
    Account-level overview for one account.

    Attributes:
        base_currency: Currency balances are expressed in (e.g., "USDT")
        base_balance: Margin balance / equity
        total_notional_value: Sum of absolute position notionals
        account_leverage: total_notional_value / base_balance
        open_positions_count: Number of non-zero positions
        open_orders_count: Number of resting orders
        account_margin_ratio: Maintenance margin / equity, in percent
        liquidation_buffer: 100 - account_margin_ratio, in percent
    """

    exchange: str
    account_name: str
    account_type: str
    base_currency: str = "USDT"
    base_balance: float = 0.0
    total_notional_value: float = 0.0
    account_leverage: float = 0.0
    open_positions_count: int = Field(default=0, ge=0)
    open_orders_count: int = Field(default=0, ge=0)
    account_margin_ratio: float = 0.0
    liquidation_buffer: float = 0.0


class ExchangeSnapshot(BaseModel):
    """Normalized result of one successful fetch: positions plus summary."""

    positions: List[Position] = Field(default_factory=list)
    account_summary: AccountSummary


# ============================================
# Read-side Views
# ============================================

class CacheView(BaseModel):
    """
    Independent copy of the snapshot cache.

    Attributes:
        accounts: Latest snapshot per account name (stale entries included)
        current_account: Currently selected account ("" when none)
        available_accounts: Every registered account name
        account_configs: Public (credential-free) configs per account
        last_update: ISO timestamp of this read
    """

    accounts: Dict[str, ExchangeSnapshot] = Field(default_factory=dict)
    current_account: str = ""
    available_accounts: List[str] = Field(default_factory=list)
    account_configs: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    last_update: Optional[str] = None

    @property
    def available_exchanges(self) -> List[str]:
        """Distinct exchanges among the configured accounts, in first-seen order."""
        seen: Dict[str, None] = {}
        for cfg in self.account_configs.values():
            seen.setdefault(cfg.get("exchange", ""), None)
        return [ex for ex in seen if ex]

    def accounts_by_exchange(self) -> Dict[str, List[str]]:
        """Account names grouped by exchange."""
        grouped: Dict[str, List[str]] = {}
        for name in self.available_accounts:
            exchange = self.account_configs.get(name, {}).get("exchange", "")
            grouped.setdefault(exchange, []).append(name)
        return grouped


class AccountHealth(BaseModel):
    """Health record of one account, derived from its fetch state."""

    healthy: bool
    last_fetch: Optional[str] = None
    time_since_last_fetch: Optional[int] = Field(None, description="Seconds since last successful fetch")
    in_backoff: bool = False
    backoff_ends: Optional[str] = None
    error_count: int = 0
    config: Dict[str, Any] = Field(default_factory=dict)
