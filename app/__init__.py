"""
FastAPI Application Package

This package contains the FastAPI application factory and its routes.
It serves position snapshots, account summaries and fetch health of the
monitored accounts, plus the Grafana JSON-datasource endpoints.
"""
