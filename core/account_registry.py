"""
Account Registry - Authoritative Set of Configured Accounts

This module keeps, for every account name:
    - the immutable AccountConfig
    - its resolved AccountKind
    - its connector handle (once initialized)
    - its AccountFetchState
    - its registration status (initializing / ready / failed)

Design:
    - The registry is a plain object constructed by the service; there is no
      module-level instance.
    - Connectors are built by a factory (exchanges.create_connector by default)
      so tests can plug in fakes.
    - Names are reserved under a lock before connector initialization is
      awaited, so two concurrent registrations of the same name can never
      both create fetch state.
    - One account's initialization failure never blocks or aborts another's.

Example Usage:
    registry = AccountRegistry()
    await registry.register(AccountConfig(name="SF1", exchange="binance",
                                           account_type="futures", ...))
    registry.is_initialized("SF1")   # True
    registry.list_names()            # ['SF1']
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from core.errors import AccountInitializationError, DuplicateAccountError, PositionHubError
from core.exchange_interface import ExchangeConnector
from core.fetch_state import AccountFetchState
from core.logging import get_logger
from core.schemas import AccountConfig, AccountKind


ConnectorFactory = Callable[[AccountConfig], ExchangeConnector]


class AccountStatus(str, Enum):
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


@dataclass
class AccountEntry:
    """Registry record of one account."""

    config: AccountConfig
    kind: AccountKind
    state: AccountFetchState = field(default_factory=AccountFetchState)
    status: AccountStatus = AccountStatus.INITIALIZING
    connector: Optional[ExchangeConnector] = None
    error: Optional[str] = None

    @property
    def name(self) -> str:
        return self.config.name


def _default_connector_factory(config: AccountConfig) -> ExchangeConnector:
    # Import here to avoid circular imports
    # Each exchange module imports from core, so we can't import at module level
    from exchanges import create_connector
    return create_connector(config)


class AccountRegistry:
    """
    Registry of accounts and their connectors.

    Attributes:
        accounts: Mapping of account name to AccountEntry

    Example:
        >>> registry = AccountRegistry(connector_factory=FakeConnector)
        >>> await registry.register(config)
        >>> registry.initialized_names()
        ['SF1']
    """

    def __init__(self, connector_factory: Optional[ConnectorFactory] = None):
        self.accounts: Dict[str, AccountEntry] = {}
        self._connector_factory = connector_factory or _default_connector_factory
        self._lock = asyncio.Lock()
        self._logger = get_logger(__name__)

    # ============================================
    # Registration
    # ============================================

    async def register(self, config: AccountConfig) -> AccountEntry:
        """
        Register an account and initialize its connector.

        Args:
            config: Account configuration

        Returns:
            AccountEntry: The ready entry

        Raises:
            UnsupportedAccountError: Unsupported (exchange, account_type)
            DuplicateAccountError: Name already registered (initializing or ready)
            AccountInitializationError: Connector creation or initialize() failed

        Notes:
            - A name whose previous initialization failed may be registered
              again; a fresh entry replaces the failed one.
            - On failure the entry stays known with status FAILED, so the
              name still appears in list_names() but never gets polled.
        """
        kind = config.kind

        async with self._lock:
            existing = self.accounts.get(config.name)
            if existing is not None and existing.status != AccountStatus.FAILED:
                raise DuplicateAccountError(config.name)
            entry = AccountEntry(config=config, kind=kind)
            self.accounts[config.name] = entry

        self._logger.debug(f"Initializing account {config.name} ({kind.exchange} {kind.account_type})...")
        try:
            connector = self._connector_factory(config)
            await connector.initialize()
        except Exception as e:
            entry.status = AccountStatus.FAILED
            entry.error = str(e) or e.__class__.__name__
            self._logger.error(f"✗ Failed to initialize account {config.name}: {entry.error}")
            raise AccountInitializationError(config.name, e) from e

        entry.connector = connector
        entry.status = AccountStatus.READY
        self._logger.info(f"✓ Account {config.name} ({kind.exchange} {kind.account_type}) initialized successfully")
        return entry

    async def register_all(self, configs: Iterable[AccountConfig]) -> Dict[str, PositionHubError]:
        """
        Register several accounts concurrently.

        Each registration is isolated: failures are logged and collected,
        and never abort the others.

        Returns:
            Dict[str, PositionHubError]: Errors by account name (empty if all succeeded)
        """
        configs = list(configs)
        self._logger.info(f"Registering {len(configs)} account(s)...")

        results = await asyncio.gather(
            *(self.register(config) for config in configs),
            return_exceptions=True,
        )

        errors: Dict[str, PositionHubError] = {}
        for config, result in zip(configs, results):
            if isinstance(result, PositionHubError):
                if not isinstance(result, AccountInitializationError):
                    # initialization failures were already logged by register()
                    self._logger.error(f"✗ Cannot register account {config.name}: {result}")
                errors[config.name] = result
            elif isinstance(result, BaseException):
                raise result

        ready = len(configs) - len(errors)
        self._logger.info(f"{ready}/{len(configs)} account(s) initialized")
        return errors

    # ============================================
    # Lookup
    # ============================================

    def get(self, name: str) -> Optional[AccountConfig]:
        """Configuration of an account, or None if the name is unknown."""
        entry = self.accounts.get(name)
        return entry.config if entry else None

    def entry(self, name: str) -> Optional[AccountEntry]:
        return self.accounts.get(name)

    def list_names(self) -> List[str]:
        """All registered account names, whatever their status."""
        return list(self.accounts.keys())

    def is_initialized(self, name: str) -> bool:
        """True only if the account's connector initialized successfully."""
        entry = self.accounts.get(name)
        return entry is not None and entry.status == AccountStatus.READY

    def initialized_names(self) -> List[str]:
        return [name for name, entry in self.accounts.items() if entry.status == AccountStatus.READY]

    def failed_accounts(self) -> Dict[str, str]:
        """Accounts whose connector failed to initialize, with the error message."""
        return {
            name: entry.error or ""
            for name, entry in self.accounts.items()
            if entry.status == AccountStatus.FAILED
        }

    # ============================================
    # Lifecycle
    # ============================================

    async def shutdown_all(self) -> None:
        """
        Shut down every initialized connector.

        Errors are logged per account and never stop the others.
        """
        self._logger.info("Shutting down all account connectors...")

        for name, entry in self.accounts.items():
            if entry.connector is None:
                continue
            try:
                await entry.connector.shutdown()
                self._logger.debug(f"✓ {name} shut down")
            except Exception as e:
                self._logger.error(f"✗ Error shutting down {name}: {e}")

        self._logger.info("All account connectors shut down")

    def __repr__(self) -> str:
        return f"<AccountRegistry(accounts={self.list_names()})>"

    def __len__(self) -> int:
        return len(self.accounts)

    def __contains__(self, name: object) -> bool:
        return name in self.accounts
