"""
Exchange Connectors Package

This package contains one connector per supported account kind. Each
exchange has its own subfolder with:
- api_client.py: REST API logic (signing, retries, raw endpoints)
- __init__.py: Connector classes implementing ExchangeConnector

create_connector() is the factory the account registry uses: adding an
account kind means adding an AccountKind member and an entry in CONNECTORS.
"""

from typing import Dict, Type

from core.exchange_interface import ExchangeConnector
from core.schemas import AccountConfig, AccountKind
from exchanges.binance import BinanceFuturesConnector, BinancePortfolioMarginConnector
from exchanges.bybit import BybitUnifiedConnector


CONNECTORS: Dict[AccountKind, Type[ExchangeConnector]] = {
    AccountKind.BINANCE_FUTURES: BinanceFuturesConnector,
    AccountKind.BINANCE_PORTFOLIO_MARGIN: BinancePortfolioMarginConnector,
    AccountKind.BYBIT_UNIFIED: BybitUnifiedConnector,
}


def create_connector(config: AccountConfig) -> ExchangeConnector:
    """
    Build the connector for an account.

    Raises:
        UnsupportedAccountError: If the account kind has no connector
    """
    return CONNECTORS[config.kind](config)


__all__ = ["CONNECTORS", "create_connector"]
