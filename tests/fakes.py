"""
Test doubles shared by the unit tests.

- FakeConnector: scriptable ExchangeConnector (no network)
- ManualClock: millisecond clock advanced by hand
- make_config / make_snapshot: small builders for schema objects
"""

from typing import Dict, List, Optional

from core.exchange_interface import ExchangeConnector
from core.schemas import AccountConfig, AccountSummary, ExchangeSnapshot, Position


class ManualClock:
    """Callable clock returning epoch ms; tests move it with advance()."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def make_config(name: str = "SF1", exchange: str = "binance", account_type: str = "futures") -> AccountConfig:
    return AccountConfig(
        name=name,
        exchange=exchange,
        accountType=account_type,
        apiKey=f"{name}-key",
        apiSecret=f"{name}-secret",
    )


def make_snapshot(account_name: str = "SF1", balance: float = 1000.0, symbols: List[str] = ("BTCUSDT",)) -> ExchangeSnapshot:
    positions = [
        Position(
            symbol=symbol,
            side="LONG",
            size=0.1,
            notional_value=5000.0,
            entry_price=49000.0,
            mark_price=50000.0,
            exchange="binance",
            account_name=account_name,
        )
        for symbol in symbols
    ]
    summary = AccountSummary(
        exchange="binance",
        account_name=account_name,
        account_type="futures",
        base_balance=balance,
        total_notional_value=5000.0 * len(positions),
        account_leverage=5000.0 * len(positions) / balance,
        open_positions_count=len(positions),
    )
    return ExchangeSnapshot(positions=positions, account_summary=summary)


class FakeConnector(ExchangeConnector):
    """
    Connector whose behavior is set per test.

    Attributes:
        fail_init: Exception raised by initialize() (None = succeed)
        results: Queue of snapshots or exceptions returned by fetch_snapshot();
                 when empty, a default snapshot is returned
        fetch_calls / shutdown_calls: Call counters
    """

    exchange = "binance"
    account_type = "futures"

    def __init__(self, config: AccountConfig, fail_init: Optional[Exception] = None):
        super().__init__(config)
        self.fail_init = fail_init
        self.results: List[object] = []
        self.fetch_calls = 0
        self.shutdown_calls = 0
        self.initialized = False

    async def initialize(self) -> None:
        if self.fail_init is not None:
            raise self.fail_init
        self.initialized = True

    async def fetch_snapshot(self) -> ExchangeSnapshot:
        self.fetch_calls += 1
        if self.results:
            result = self.results.pop(0)
        else:
            result = make_snapshot(self.account_name)
        if isinstance(result, Exception):
            raise result
        return result

    async def shutdown(self) -> None:
        self.shutdown_calls += 1

    def fail_next(self, times: int, error: Optional[Exception] = None) -> None:
        for _ in range(times):
            self.results.append(error or RuntimeError(f"{self.account_name} unavailable"))


class FakeConnectorFactory:
    """
    Connector factory recording every connector it builds.

    Example:
        >>> factory = FakeConnectorFactory(fail_init={"BAD"})
        >>> registry = AccountRegistry(connector_factory=factory)
    """

    def __init__(self, fail_init: Optional[Dict[str, Exception]] = None):
        self.fail_init = dict(fail_init or {})
        self.connectors: Dict[str, FakeConnector] = {}

    def __call__(self, config: AccountConfig) -> FakeConnector:
        connector = FakeConnector(config, fail_init=self.fail_init.get(config.name))
        self.connectors[config.name] = connector
        return connector
