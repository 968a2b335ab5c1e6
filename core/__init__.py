"""
Core Package

Contains the exchange-agnostic account core:
- ExchangeConnector: Abstract base class every account connector implements
- AccountRegistry: Configured accounts, their connectors and fetch state
- FetchOrchestrator: One fetch pass over all accounts with failure backoff
- HealthReporter: Per-account health derived from the fetch state
- Schemas: Pydantic models for positions, summaries and views

Nothing in here talks to an exchange directly; connectors live in exchanges/.
"""
