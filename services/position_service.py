"""
Position Service

The one object the HTTP layer talks to. It owns the account registry, the
snapshot cache, the fetch orchestrator, the health reporter and the
scheduler, and exposes the read/write operations consumers need:

    get_snapshot()          -> CacheView copy (never touches the network)
    set_current_account()   -> select the account shown by default
    get_health()            -> health record per initialized account
    register_account()      -> add an account at runtime

The service is constructed explicitly (see app.main.create_app) and passed
around; nothing here is a module-level singleton.
"""

from typing import Callable, Dict, Iterable, List, Optional

from core.account_registry import AccountRegistry, ConnectorFactory
from core.config import Settings, settings as default_settings
from core.errors import AccountInitializationError, PositionHubError, UnknownAccountError
from core.fetch_state import BackoffPolicy
from core.health import HealthReporter
from core.logging import get_logger
from core.orchestrator import FetchOrchestrator, PassReport
from core.schemas import AccountConfig, AccountHealth, CacheView, ExchangeSnapshot
from services.scheduler import FetchScheduler
from storage.snapshot_cache import SnapshotCache


class PositionService:
    """
    Facade over the account core.

    Args:
        config: Settings (polling constants, defaults)
        connector_factory: Builds a connector for an AccountConfig
                           (defaults to exchanges.create_connector)
        clock: Millisecond clock shared by orchestrator and health reporter

    Example:
        >>> service = PositionService()
        >>> await service.start(load_account_configs())
        >>> service.get_snapshot().available_accounts
        ['SF1', 'SF2', 'PM1']
        >>> await service.stop()
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        connector_factory: Optional[ConnectorFactory] = None,
        clock: Optional[Callable[[], int]] = None,
        policy: Optional[BackoffPolicy] = None,
    ):
        self.config = config or default_settings
        self.registry = AccountRegistry(connector_factory=connector_factory)
        self.cache = SnapshotCache()
        self.orchestrator = FetchOrchestrator(
            self.registry,
            self.cache,
            policy=policy or self.config.backoff_policy,
            clock=clock,
            concurrent=self.config.fetch_concurrently,
        )
        self.health = HealthReporter(
            self.registry,
            health_window_ms=self.config.health_window_ms,
            clock=clock,
        )
        self.scheduler = FetchScheduler(
            self.orchestrator,
            interval_ms=self.config.fetch_interval_ms,
            on_pass=self._log_account_metrics,
        )
        self.ready = False
        self._logger = get_logger(__name__)

    # ============================================
    # Lifecycle
    # ============================================

    async def start(self, configs: Iterable[AccountConfig] = ()) -> Dict[str, PositionHubError]:
        """
        Register the configured accounts and start polling.

        Registration failures are isolated per account and returned; the
        first fetch pass has completed when this coroutine returns.

        Returns:
            Dict[str, PositionHubError]: Registration errors by account name
        """
        errors = await self.registry.register_all(configs)
        for name in self.registry.list_names():
            self._remember(self.registry.get(name))

        if not self.cache.current_account and self.registry.list_names():
            self.cache.set_current(self.registry.list_names()[0])

        await self.scheduler.start()
        self.ready = True

        names = self.registry.list_names()
        self._logger.info(f"Monitoring {len(names)} account(s): {', '.join(names) or 'none'}")
        return errors

    async def stop(self) -> None:
        self.ready = False
        await self.scheduler.stop()
        await self.registry.shutdown_all()

    # ============================================
    # Caller Contract
    # ============================================

    def get_snapshot(self) -> CacheView:
        """Independent copy of the current cache."""
        return self.cache.get()

    def set_current_account(self, name: str) -> None:
        """
        Raises:
            UnknownAccountError: Name was never registered (selection unchanged)
        """
        self.cache.set_current(name)
        self._logger.info(f"Current account set to {name}")

    def get_health(self) -> Dict[str, AccountHealth]:
        return self.health.report()

    async def register_account(self, config: AccountConfig) -> None:
        """
        Register an account at runtime.

        The account joins the next fetch pass; it is not fetched immediately.

        Raises:
            UnsupportedAccountError, DuplicateAccountError, AccountInitializationError
        """
        try:
            await self.registry.register(config)
        except AccountInitializationError:
            # known but uninitialized, like a failed startup account
            self._remember(config)
            raise
        self._remember(config)
        if not self.cache.current_account:
            self.cache.set_current(config.name)

    # ============================================
    # Convenience Reads
    # ============================================

    def list_accounts(self) -> List[str]:
        return self.registry.list_names()

    def get_account_data(self, name: str) -> Optional[ExchangeSnapshot]:
        """
        Latest snapshot of one account (None if it never fetched successfully).

        Raises:
            UnknownAccountError: Name was never registered
        """
        if name not in self.registry:
            raise UnknownAccountError(name)
        return self.cache.get_account(name)

    def get_current_account_data(self) -> Optional[ExchangeSnapshot]:
        current = self.cache.current_account
        if not current:
            return None
        return self.cache.get_account(current)

    async def refresh(self) -> PassReport:
        """Run one fetch pass now, outside the schedule."""
        return await self.orchestrator.run_pass()

    # ============================================
    # Internals
    # ============================================

    def _remember(self, config: AccountConfig) -> None:
        self.cache.add_account(config)

    async def _log_account_metrics(self, report: PassReport) -> None:
        """Per-account metrics after each pass, at DEBUG level."""
        view = self.cache.get()
        for name, data in view.accounts.items():
            summary = data.account_summary
            cfg = view.account_configs.get(name, {})
            self._logger.debug(
                f"--- {name} ({cfg.get('exchange')} {cfg.get('account_type')}) --- "
                f"balance={summary.base_balance:.2f} {summary.base_currency} "
                f"notional={summary.total_notional_value:.2f} "
                f"leverage={summary.account_leverage:.2f}x "
                f"positions={summary.open_positions_count} orders={summary.open_orders_count} "
                f"margin_ratio={summary.account_margin_ratio:.2f}% "
                f"liq_buffer={summary.liquidation_buffer:.2f}%"
            )
            for pos in data.positions:
                self._logger.debug(
                    f"    {pos.symbol} {pos.side} size={pos.size:.4f} "
                    f"notional={pos.notional_value:.2f} entry={pos.entry_price:.4f} "
                    f"mark={pos.mark_price:.4f} liq={pos.liquidation_price:.4f} "
                    f"({pos.liquidation_price_change_percent:.2f}%) "
                    f"funding={pos.current_funding_rate:.4f}%/{pos.next_funding_rate:.4f}% "
                    f"lev={pos.leverage:.1f}x upnl={pos.unrealized_pnl:.2f} "
                    f"rpnl={pos.realized_pnl:.2f} {pos.margin_mode}"
                )

        for name in self.registry.initialized_names():
            if not self.cache.has_data(name):
                self._logger.debug(f"--- {name} --- no data yet")
