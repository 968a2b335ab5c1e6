"""
Test Suite

Contains the unit tests for the backend system.

Structure:
- tests/unit/: Tests for individual components (fetch state, registry,
  orchestrator, connectors, HTTP routes)
- tests/fakes.py: Fake connectors and a manual clock shared by the tests

No test talks to a real exchange. Uses pytest with pytest-asyncio for
testing async functionality.
"""
