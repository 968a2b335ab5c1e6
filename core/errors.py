"""
Error Taxonomy

Every error raised by the account core derives from PositionHubError so the
HTTP layer (and anything else calling into the service) can tell our own
failures apart from programming errors.

Categories:
    - ConfigurationError: bad account definitions (unsupported exchange /
      account type, duplicate name). Reported to the caller, never fatal.
    - AccountInitializationError: the connector for one account failed to
      initialize. Isolated to that account.
    - UnknownAccountError: selection or query of an account name that was
      never registered.
    - ExchangeAPIError: raised by connectors when an exchange call fails.
      The orchestrator treats it like any other fetch failure.
"""

from typing import Optional


class PositionHubError(Exception):
    """Base class for all application errors."""


class ConfigurationError(PositionHubError, ValueError):
    """Invalid account configuration."""


class UnsupportedAccountError(ConfigurationError):
    """The (exchange, account_type) combination has no connector."""

    def __init__(self, exchange: str, account_type: str):
        self.exchange = exchange
        self.account_type = account_type
        super().__init__(
            f"Unsupported account: exchange='{exchange}' account_type='{account_type}'"
        )


class DuplicateAccountError(ConfigurationError):
    """An account with this name is already registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Account '{name}' is already registered")


class AccountInitializationError(PositionHubError):
    """Connector initialization failed for a single account."""

    def __init__(self, name: str, cause: BaseException):
        self.name = name
        self.cause = cause
        super().__init__(f"Failed to initialize account '{name}': {cause}")


class UnknownAccountError(PositionHubError, LookupError):
    """The account name was never registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown account: '{name}'")


class ExchangeAPIError(PositionHubError):
    """An exchange REST call failed (HTTP error, API error code, bad payload)."""

    def __init__(self, exchange: str, message: str, status: Optional[int] = None):
        self.exchange = exchange
        self.status = status
        self.message = message
        status_str = f" (HTTP {status})" if status is not None else ""
        super().__init__(f"{exchange} API error{status_str}: {message}")
