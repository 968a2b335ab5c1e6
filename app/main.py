"""
FastAPI Application - Multi-Account Position API

Serves the latest position and account snapshots of every configured trading
account, plus a Grafana JSON-datasource surface for dashboards.

Supported Accounts:
    - Binance USD-M Futures
    - Binance Portfolio Margin
    - Bybit Unified Trading Account

Usage:
    uvicorn app.main:app --host 0.0.0.0 --port 8080

Docs:
    - Swagger: http://localhost:8080/docs
    - ReDoc: http://localhost:8080/redoc
"""

import re
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from core.config import load_account_configs, settings, validate_configuration
from core.errors import (
    AccountInitializationError,
    DuplicateAccountError,
    UnknownAccountError,
    UnsupportedAccountError,
)
from core.logging import logger, set_log_level
from core.schemas import AccountConfig, AccountHealth, CacheView
from core.utils.time import current_utc_datetime
from services.position_service import PositionService


ACCOUNTS_TARGET = re.compile(r"^/api/accounts/([^/]+)$")


# ============================================
# Request Bodies
# ============================================

class SetCurrentRequest(BaseModel):
    account: Optional[str] = None
    exchange: Optional[str] = None


class VariableRequest(BaseModel):
    payload: Dict[str, Any] = Field(default_factory=dict)


class MetricsRequest(BaseModel):
    targets: List[Dict[str, Any]] = Field(default_factory=list)


# ============================================
# Application Factory
# ============================================

def create_app(service: Optional[PositionService] = None) -> FastAPI:
    """
    Build the FastAPI application around a PositionService.

    The service is started in the lifespan with the accounts from the
    configuration and stopped on shutdown. Tests pass a prepared service and
    skip the lifespan.
    """
    service = service or PositionService()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle application startup and shutdown."""
        logger.info("=== Application Starting ===")
        try:
            validate_configuration()
            if settings.debug:
                set_log_level("DEBUG")
            errors = await service.start(load_account_configs())
            for name, error in errors.items():
                logger.error(f"Account {name} not started: {error}")
            logger.info("=== Started Successfully ===")
        except Exception as e:
            logger.error(f"Startup failed: {e}")
            raise

        yield

        logger.info("=== Shutting Down ===")
        try:
            await service.stop()
            logger.info("=== Shutdown Complete ===")
        except Exception as e:
            logger.error(f"Shutdown error: {e}")

    app = FastAPI(
        title="PositionHub Multi-Account Position API",
        description=(
            "Latest positions and account summaries of configured exchange accounts.\n\n"
            "## REST Endpoints\n"
            "- `GET /api/data` - Full cache (all accounts)\n"
            "- `GET /api/positions` - Positions of the current account\n"
            "- `GET /api/account-summary` - Summary of the current account\n"
            "- `GET /api/available` - Accounts, exchanges and current selection\n"
            "- `GET /api/accounts/{exchange}` - Accounts of one exchange\n"
            "- `POST /api/set-current` - Select the current account\n"
            "- `GET /api/health` - Per-account fetch health\n"
            "- `POST /api/accounts` - Register an account at runtime\n\n"
            "## Grafana JSON Datasource\n"
            "- `GET /search`, `POST /variable`, `POST /annotations`, `POST /api/account-metrics`"
        ),
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    # ============================================
    # System Endpoints
    # ============================================

    @app.get("/", tags=["System"])
    async def root():
        """API information."""
        return {
            "name": "PositionHub Multi-Account Position API",
            "version": "1.0.0",
            "status": "ok",
            "docs": "/docs",
            "endpoints": {
                "search": "/search",
                "annotations": "/annotations",
                "variable": "/variable",
                "health": "/health",
                "api": "/api",
            },
        }

    @app.get("/health", tags=["System"])
    async def health_check():
        """Liveness plus readiness of the polling service."""
        return {
            "status": "ok",
            "ready": service.ready,
            "timestamp": current_utc_datetime().isoformat(),
            "accounts": len(service.list_accounts()),
            "all_healthy": service.health.all_healthy(),
            "failed_accounts": service.registry.failed_accounts(),
        }

    # ============================================
    # Grafana JSON Datasource
    # ============================================

    @app.get("/search", tags=["Grafana"])
    async def search():
        return ["positions", "account_summary", "available_exchanges", "health_status"]

    @app.post("/annotations", tags=["Grafana"])
    async def annotations():
        return []

    @app.post("/variable", tags=["Grafana"])
    async def variable(body: VariableRequest):
        """Dashboard variable queries: exchange list or accounts of one exchange."""
        target = body.payload.get("target")
        view = service.get_snapshot()

        if target == "/api/available":
            return view.available_exchanges

        match = ACCOUNTS_TARGET.match(target or "")
        if match:
            grouped = view.accounts_by_exchange()
            exchange = match.group(1).lower()
            if exchange not in grouped:
                raise HTTPException(status_code=404, detail="Exchange not found")
            return grouped[exchange]

        raise HTTPException(status_code=400, detail="Unknown variable target")

    @app.post("/api/account-metrics", tags=["Grafana"])
    async def account_metrics(body: MetricsRequest):
        """Select the target account and return its summary metrics."""
        if not body.targets:
            raise HTTPException(status_code=400, detail="Invalid request body")
        account = body.targets[0].get("account")
        if not account:
            raise HTTPException(status_code=400, detail="Account is required")

        try:
            service.set_current_account(account)
        except UnknownAccountError as e:
            raise HTTPException(status_code=404, detail=str(e))

        data = service.get_account_data(account)
        if data is None:
            raise HTTPException(status_code=404, detail="No data")

        summary = data.account_summary
        metrics = {
            "baseCurrency": summary.base_currency,
            "baseBalance": summary.base_balance,
            "totalNotionalValue": summary.total_notional_value,
            "accountLeverage": summary.account_leverage,
            "openPositions": summary.open_positions_count,
            "openOrders": summary.open_orders_count,
            "marginRatio": summary.account_margin_ratio,
            "liquidationBuffer": summary.liquidation_buffer,
        }
        return JSONResponse(content=metrics, headers={"Cache-Control": "no-store"})

    # ============================================
    # Account Data Endpoints
    # ============================================

    @app.get("/api", tags=["Accounts"])
    async def api_index():
        return {
            "status": "ok",
            "endpoints": {
                "data": "/api/data",
                "positions": "/api/positions",
                "account_summary": "/api/account-summary",
                "available": "/api/available",
                "accounts": "/api/accounts/{exchange}",
                "set_current": "/api/set-current",
                "health": "/api/health",
            },
        }

    @app.get("/api/data", response_model=CacheView, tags=["Accounts"])
    async def get_data():
        """Every account's latest snapshot (stale data included)."""
        return service.get_snapshot()

    @app.get("/api/positions", tags=["Accounts"])
    async def get_positions():
        """Positions of the current account."""
        if not service.get_snapshot().current_account:
            raise HTTPException(status_code=404, detail="No account selected")
        data = service.get_current_account_data()
        if data is None:
            raise HTTPException(status_code=404, detail="No data available for selected account")
        return data.positions

    @app.get("/api/account-summary", tags=["Accounts"])
    async def get_account_summary():
        """Summary of the current account."""
        if not service.get_snapshot().current_account:
            raise HTTPException(status_code=404, detail="No account selected")
        data = service.get_current_account_data()
        if data is None:
            raise HTTPException(status_code=404, detail="No data available for selected account")
        return data.account_summary

    @app.get("/api/available", tags=["Accounts"])
    async def get_available():
        view = service.get_snapshot()
        return {
            "exchanges": view.available_exchanges,
            "accounts": view.accounts_by_exchange(),
            "currentAccount": view.current_account,
        }

    @app.get("/api/accounts/{exchange}", tags=["Accounts"])
    async def get_exchange_accounts(exchange: str):
        view = service.get_snapshot()
        grouped = view.accounts_by_exchange()
        if exchange.lower() not in grouped:
            raise HTTPException(status_code=404, detail="Exchange not found")
        return {"accounts": grouped[exchange.lower()], "currentAccount": view.current_account}

    @app.post("/api/set-current", tags=["Accounts"])
    async def set_current(body: SetCurrentRequest):
        if not body.account:
            raise HTTPException(status_code=400, detail="Account is required")
        try:
            service.set_current_account(body.account)
        except UnknownAccountError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"success": True, "account": body.account}

    @app.get("/api/health", response_model=Dict[str, AccountHealth], tags=["Accounts"])
    async def get_health():
        """Fetch health of every initialized account."""
        return service.get_health()

    @app.post("/api/accounts", status_code=201, tags=["Accounts"])
    async def register_account(config: AccountConfig):
        """Register an account at runtime; it joins the next fetch pass."""
        try:
            await service.register_account(config)
        except UnsupportedAccountError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except DuplicateAccountError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except AccountInitializationError as e:
            raise HTTPException(status_code=502, detail=str(e))
        return {"success": True, "account": config.public_view()}

    # ============================================
    # Error Handlers
    # ============================================

    @app.exception_handler(500)
    async def internal_error_handler(request: Request, exc: Exception):
        """Handle 500 errors."""
        logger.error(f"Internal error on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    return app


app = create_app()
