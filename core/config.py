"""
Configuration Management Module

This module handles loading, validating, and providing access to application
configuration from environment variables (.env file).

Uses Pydantic Settings for automatic validation and type conversion.

Key Features:
- Loads server, polling and connector settings from the environment
- Loads the account list from the ACCOUNTS variable (JSON) and/or a JSON file
- Fills each account's base URL from the per-exchange defaults when omitted
- Validates everything once at startup

Usage:
    from core.config import settings, load_account_configs

    print(settings.fetch_interval_ms)
    for account in load_account_configs():
        print(account.name, account.kind)

Account JSON format (ACCOUNTS env var or ACCOUNTS_FILE contents):
    [
        {"name": "SF1", "exchange": "binance", "accountType": "futures",
         "apiKey": "...", "apiSecret": "..."},
        {"name": "BY1", "exchange": "bybit", "accountType": "unified",
         "apiKey": "...", "apiSecret": "...", "baseUrl": "https://api.bybit.com"}
    ]
"""

import json
from pathlib import Path
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.fetch_state import (
    BACKOFF_CAP_EXPONENT,
    FAILURE_THRESHOLD,
    FETCH_INTERVAL_MS,
    HEALTH_WINDOW_MS,
    INITIAL_BACKOFF_MS,
    BackoffPolicy,
)
from core.schemas import AccountConfig, AccountKind


class Settings(BaseSettings):
    """
    Application Settings

    Values are automatically loaded from environment variables or .env file.

    Attributes:
        app_host / app_port: Address the HTTP server binds to
        environment: Current environment (development, production)
        debug: Enable debug mode
        log_level: Logging level
        cors_origins: Comma-separated allowed origins ("*" for any)
        fetch_interval_ms: Time between fetch passes
        failure_threshold: Consecutive failures before backoff starts
        initial_backoff_ms: First backoff duration
        backoff_cap_exponent: Cap on the backoff doubling
        health_window_ms: Max age of the last success for a healthy account
        fetch_concurrently: Fetch accounts of one pass concurrently
        request_timeout: HTTP request timeout for exchange calls (seconds)
        max_retries: Attempts per exchange REST call
        recv_window: Signed-request receive window (ms)
        binance_futures_base_url / binance_pm_base_url / bybit_base_url:
            Default REST hosts per account kind
        accounts: Accounts defined inline (ACCOUNTS, JSON)
        accounts_file: Optional JSON file with more accounts
    """

    # ============================================
    # Application Configuration
    # ============================================

    app_host: str = Field(
        default="0.0.0.0",
        description="FastAPI server host address"
    )

    app_port: int = Field(
        default=8080,
        description="FastAPI server port"
    )

    environment: str = Field(
        default="development",
        description="Application environment (development, production)"
    )

    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    cors_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins"
    )

    # ============================================
    # Polling & Resilience
    # ============================================

    fetch_interval_ms: int = Field(
        default=FETCH_INTERVAL_MS,
        description="Interval between fetch passes (ms)"
    )

    failure_threshold: int = Field(
        default=FAILURE_THRESHOLD,
        description="Consecutive failures before an account backs off"
    )

    initial_backoff_ms: int = Field(
        default=INITIAL_BACKOFF_MS,
        description="Backoff applied when the failure threshold is reached (ms)"
    )

    backoff_cap_exponent: int = Field(
        default=BACKOFF_CAP_EXPONENT,
        description="Maximum doubling exponent of the backoff"
    )

    health_window_ms: int = Field(
        default=HEALTH_WINDOW_MS,
        description="An account is healthy if it fetched successfully within this window (ms)"
    )

    fetch_concurrently: bool = Field(
        default=True,
        description="Fetch all accounts of a pass concurrently instead of one by one"
    )

    # ============================================
    # Exchange Connectors
    # ============================================

    request_timeout: int = Field(
        default=10,
        description="HTTP request timeout in seconds"
    )

    max_retries: int = Field(
        default=3,
        description="Attempts per exchange REST call before giving up"
    )

    recv_window: int = Field(
        default=5000,
        description="Receive window for signed requests (ms)"
    )

    binance_futures_base_url: str = Field(
        default="https://fapi.binance.com",
        description="Binance USD-M futures API base URL"
    )

    binance_pm_base_url: str = Field(
        default="https://papi.binance.com",
        description="Binance Portfolio Margin API base URL"
    )

    bybit_base_url: str = Field(
        default="https://api.bybit.com",
        description="Bybit v5 API base URL"
    )

    # ============================================
    # Accounts
    # ============================================

    accounts: List[AccountConfig] = Field(
        default_factory=list,
        description="Accounts as a JSON list (ACCOUNTS env var)"
    )

    accounts_file: str = Field(
        default="",
        description="Path to a JSON file with additional accounts"
    )

    # ============================================
    # Pydantic Settings Configuration
    # ============================================

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False
    )

    # ============================================
    # Derived Values
    # ============================================

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Convert comma-separated CORS origins string to a list.

        Example:
            >>> settings.cors_origins_list
            ['*']
        """
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def backoff_policy(self) -> BackoffPolicy:
        """Backoff policy built from the resilience settings."""
        return BackoffPolicy(
            failure_threshold=self.failure_threshold,
            initial_backoff_ms=self.initial_backoff_ms,
            cap_exponent=self.backoff_cap_exponent,
        )

    def default_base_url(self, kind: AccountKind) -> str:
        """Default REST host for an account kind."""
        return {
            AccountKind.BINANCE_FUTURES: self.binance_futures_base_url,
            AccountKind.BINANCE_PORTFOLIO_MARGIN: self.binance_pm_base_url,
            AccountKind.BYBIT_UNIFIED: self.bybit_base_url,
        }[kind]


# ============================================
# Global Settings Instance
# ============================================

settings = Settings()


# ============================================
# Account Loading
# ============================================

def _read_accounts_file(path: str) -> List[AccountConfig]:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        raw = raw.get("accounts", [])
    if not isinstance(raw, list):
        raise ValueError(f"Accounts file '{path}' must contain a JSON list")
    return [AccountConfig.model_validate(item) for item in raw]


def load_account_configs(config: Settings = None) -> List[AccountConfig]:
    """
    Collect all configured accounts.

    Inline accounts (ACCOUNTS) come first, then those of ACCOUNTS_FILE.
    Accounts without a base URL get the default host of their kind;
    unsupported kinds are passed through untouched so that registration
    reports them.

    Args:
        config: Settings to read (defaults to the global settings)

    Returns:
        List[AccountConfig]: Accounts in declaration order
    """
    config = config or settings
    accounts = list(config.accounts)
    if config.accounts_file:
        accounts.extend(_read_accounts_file(config.accounts_file))

    resolved = []
    for account in accounts:
        if account.base_url is None:
            try:
                kind = account.kind
            except ValueError:
                resolved.append(account)
                continue
            account = account.model_copy(update={"base_url": config.default_base_url(kind)})
        resolved.append(account)
    return resolved


# ============================================
# Configuration Validation
# ============================================

def validate_configuration(config: Settings = None) -> None:
    """
    Validate critical configuration settings on application startup.

    Raises:
        ValueError: If configuration is invalid
    """
    # Import logger here to avoid circular import
    # (logging.py imports config.py, so we can't import at module level)
    from core.logging import logger

    config = config or settings

    if not (1 <= config.app_port <= 65535):
        raise ValueError(f"Invalid port number: {config.app_port}. Must be between 1 and 65535")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.log_level.upper() not in valid_log_levels:
        raise ValueError(
            f"Invalid LOG_LEVEL: '{config.log_level}'. "
            f"Must be one of: {', '.join(valid_log_levels)}"
        )

    for field in ("fetch_interval_ms", "failure_threshold", "initial_backoff_ms",
                  "health_window_ms", "request_timeout", "max_retries"):
        if getattr(config, field) <= 0:
            raise ValueError(f"{field.upper()} must be positive, got {getattr(config, field)}")

    if config.backoff_cap_exponent < 0:
        raise ValueError(f"BACKOFF_CAP_EXPONENT cannot be negative, got {config.backoff_cap_exponent}")

    accounts = load_account_configs(config)
    names = [account.name for account in accounts]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        # registration keeps the first and reports the rest
        logger.warning(f"Duplicate account names in configuration: {', '.join(duplicates)}")

    logger.info("Configuration validated successfully")
    logger.info(f"Accounts: {', '.join(names) or 'none'}")
    logger.info(f"Fetch interval: {config.fetch_interval_ms / 1000:.0f}s")
    logger.info(f"Server: {config.app_host}:{config.app_port}")
    logger.info(f"Log level: {config.log_level.upper()}")
