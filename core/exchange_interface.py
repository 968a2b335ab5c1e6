"""
Exchange Connector Interface - Contract for Per-Account Connectors

This module defines the abstract base class every exchange connector must
implement. One connector instance serves exactly one account: it owns that
account's HTTP session and credentials.

The account core never looks inside a connector. It only:
    - awaits initialize() once, at registration
    - awaits fetch_snapshot() on every fetch pass
    - awaits shutdown() when the service stops

Failures are opaque to the core: any exception from fetch_snapshot() counts
as "fetch failed" for backoff purposes, whether it was a network error, an
auth error or a rate limit.

Example:
    class BinanceFuturesConnector(ExchangeConnector):
        exchange = "binance"
        account_type = "futures"

        async def fetch_snapshot(self) -> ExchangeSnapshot:
            # Binance-specific implementation
            ...
"""

from abc import ABC, abstractmethod

from core.schemas import AccountConfig, ExchangeSnapshot


class ExchangeConnector(ABC):
    """
    Abstract Base Class for Account Connectors

    Class Attributes:
        exchange: Exchange identifier (lowercase, e.g., "binance", "bybit")
        account_type: Account variant served (e.g., "futures", "unified")

    Abstract Methods (MUST be implemented):
        - fetch_snapshot: Return positions + account summary

    Optional Methods (can be overridden):
        - initialize: Create sessions, validate credentials
        - shutdown: Close sessions
    """

    exchange: str
    """Exchange identifier (lowercase)"""

    account_type: str
    """Account variant served by this connector"""

    def __init__(self, config: AccountConfig):
        self.config = config

    @property
    def account_name(self) -> str:
        return self.config.name

    @abstractmethod
    async def fetch_snapshot(self) -> ExchangeSnapshot:
        """
        Fetch and normalize the account's positions and summary.

        Returns:
            ExchangeSnapshot: Fully populated snapshot

        Raises:
            Exception: Any failure (network, auth, rate limit, bad payload).
                       Partial results are never returned.
        """
        ...

    async def initialize(self) -> None:
        """
        Set up the session and verify the account is reachable.

        Raises:
            Exception: If initialization fails; the account is then left
                       uninitialized and never polled.

        Notes:
            - Default implementation does nothing
            - Called once by AccountRegistry.register()
        """
        pass

    async def shutdown(self) -> None:
        """
        Release the connector's resources.

        Notes:
            - Default implementation does nothing
            - Should not raise; errors are logged by the registry anyway
        """
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(account='{self.account_name}')>"
