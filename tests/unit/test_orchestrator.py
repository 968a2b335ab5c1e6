"""
Unit Tests for the Fetch Orchestrator

These tests drive fake connectors with a manual clock and verify:
- Success stores the snapshot and resets the fetch state
- Failures keep stale data and follow the backoff policy
- Accounts in backoff are skipped without calling their connector
- One account's failure never affects another in the same pass

Run with:
    pytest tests/unit/test_orchestrator.py -v
"""

import asyncio

import pytest
import pytest_asyncio

from core.account_registry import AccountRegistry
from core.fetch_state import FETCH_INTERVAL_MS
from core.orchestrator import FetchOrchestrator, FetchOutcome
from storage.snapshot_cache import SnapshotCache
from tests.fakes import FakeConnectorFactory, ManualClock, make_config, make_snapshot


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def factory():
    return FakeConnectorFactory(fail_init={"BAD": RuntimeError("invalid api key")})


@pytest_asyncio.fixture
async def registry(factory):
    registry = AccountRegistry(connector_factory=factory)
    await registry.register_all([make_config("A"), make_config("B"), make_config("BAD")])
    return registry


@pytest.fixture
def cache(registry):
    cache = SnapshotCache()
    for name in registry.list_names():
        cache.add_account(registry.get(name))
    return cache


@pytest.fixture
def orchestrator(registry, cache, clock):
    return FetchOrchestrator(registry, cache, clock=clock)


# ============================================
# Single Account
# ============================================

class TestFetchAccount:
    """Tests for fetch_account()"""

    @pytest.mark.asyncio
    async def test_success_updates_cache_and_state(self, orchestrator, registry, cache, clock):
        result = await orchestrator.fetch_account("A")

        assert result.ok
        assert cache.has_data("A")
        state = registry.entry("A").state
        assert state.last_fetch_timestamp == clock.now
        assert state.consecutive_error_count == 0

    @pytest.mark.asyncio
    async def test_failure_keeps_stale_data(self, orchestrator, factory, cache):
        """Verify a failed fetch leaves the previous snapshot in place"""
        factory.connectors["A"].results.append(make_snapshot("A", balance=777.0))
        await orchestrator.fetch_account("A")

        factory.connectors["A"].fail_next(1)
        result = await orchestrator.fetch_account("A")

        assert result.outcome == FetchOutcome.FAILED
        assert "unavailable" in result.error
        assert cache.get_account("A").account_summary.base_balance == 777.0

    @pytest.mark.asyncio
    async def test_failure_keeps_last_fetch_timestamp(self, orchestrator, factory, registry, clock):
        await orchestrator.fetch_account("A")
        first = clock.now

        clock.advance(FETCH_INTERVAL_MS)
        factory.connectors["A"].fail_next(1)
        await orchestrator.fetch_account("A")

        assert registry.entry("A").state.last_fetch_timestamp == first
        assert registry.entry("A").state.consecutive_error_count == 1

    @pytest.mark.asyncio
    async def test_uninitialized_account_not_fetched(self, orchestrator, factory):
        result = await orchestrator.fetch_account("BAD")
        assert result.outcome == FetchOutcome.NOT_INITIALIZED
        assert factory.connectors["BAD"].fetch_calls == 0

    @pytest.mark.asyncio
    async def test_unknown_account(self, orchestrator):
        result = await orchestrator.fetch_account("NOPE")
        assert result.outcome == FetchOutcome.NOT_INITIALIZED


# ============================================
# Backoff Behavior
# ============================================

class TestBackoff:
    """Tests for the consecutive-failure backoff"""

    @pytest.mark.asyncio
    async def test_fifth_failure_starts_backoff(self, orchestrator, factory, registry, clock):
        connector = factory.connectors["A"]
        connector.fail_next(5)

        for _ in range(4):
            result = await orchestrator.fetch_account("A")
            assert result.backoff_ms == 0
            clock.advance(1000)

        result = await orchestrator.fetch_account("A")

        assert result.backoff_ms == 30_000
        assert result.error_count == 5
        assert registry.entry("A").state.backoff_until == clock.now + 30_000

    @pytest.mark.asyncio
    async def test_no_connector_call_during_backoff(self, orchestrator, factory, registry, clock):
        """Verify a skipped account's connector is never invoked and state is unchanged"""
        connector = factory.connectors["A"]
        connector.fail_next(5)
        for _ in range(5):
            await orchestrator.fetch_account("A")
        calls = connector.fetch_calls
        before = registry.entry("A").state.copy()

        clock.advance(29_999)
        result = await orchestrator.fetch_account("A")

        assert result.outcome == FetchOutcome.SKIPPED_BACKOFF
        assert connector.fetch_calls == calls
        assert registry.entry("A").state == before

    @pytest.mark.asyncio
    async def test_backoff_doubles_then_caps(self, orchestrator, factory, clock):
        connector = factory.connectors["A"]
        connector.fail_next(12)

        backoffs = []
        for _ in range(12):
            result = await orchestrator.fetch_account("A")
            backoffs.append(result.backoff_ms)
            # step past any backoff so the next call is attempted
            clock.advance(1_000_000)

        assert backoffs == [
            0, 0, 0, 0,
            30_000, 60_000, 120_000, 240_000, 480_000, 960_000, 960_000, 960_000,
        ]

    @pytest.mark.asyncio
    async def test_success_after_backoff_resets(self, orchestrator, factory, registry, clock):
        connector = factory.connectors["A"]
        connector.fail_next(5)
        for _ in range(5):
            await orchestrator.fetch_account("A")

        clock.advance(30_000)
        result = await orchestrator.fetch_account("A")

        assert result.ok
        state = registry.entry("A").state
        assert state.consecutive_error_count == 0
        assert state.backoff_until == 0
        assert state.last_fetch_timestamp == clock.now


# ============================================
# Full Pass
# ============================================

class TestRunPass:
    """Tests for run_pass()"""

    @pytest.mark.asyncio
    async def test_pass_covers_initialized_accounts_only(self, orchestrator):
        report = await orchestrator.run_pass()
        assert sorted(r.account for r in report.results) == ["A", "B"]
        assert sorted(report.succeeded) == ["A", "B"]

    @pytest.mark.asyncio
    async def test_mixed_success_and_failure(self, orchestrator, factory, registry, cache):
        """Verify one failing account does not affect the other in the same pass"""
        factory.connectors["B"].fail_next(1)

        report = await orchestrator.run_pass()

        assert report.succeeded == ["A"]
        assert report.failed == ["B"]
        assert cache.has_data("A")
        assert not cache.has_data("B")
        assert registry.entry("A").state.consecutive_error_count == 0
        assert registry.entry("B").state.consecutive_error_count == 1

    @pytest.mark.asyncio
    async def test_backoff_account_skipped_in_pass(self, orchestrator, factory, clock):
        factory.connectors["B"].fail_next(5)
        for _ in range(5):
            await orchestrator.run_pass()
            clock.advance(1000)

        report = await orchestrator.run_pass()

        assert report.skipped == ["B"]
        assert report.succeeded == ["A"]
        assert factory.connectors["B"].fetch_calls == 5

    @pytest.mark.asyncio
    async def test_sequential_mode(self, registry, cache, clock, factory):
        orchestrator = FetchOrchestrator(registry, cache, clock=clock, concurrent=False)
        factory.connectors["A"].fail_next(1)

        report = await orchestrator.run_pass()

        assert [r.account for r in report.results] == ["A", "B"]
        assert report.failed == ["A"]
        assert report.succeeded == ["B"]

    @pytest.mark.asyncio
    async def test_slow_account_does_not_delay_fast_one(self, registry, cache, factory):
        """Verify concurrent passes fetch accounts independently"""
        orchestrator = FetchOrchestrator(registry, cache)
        release = asyncio.Event()
        slow = factory.connectors["A"]

        async def slow_fetch():
            await release.wait()
            return make_snapshot("A")

        slow.fetch_snapshot = slow_fetch

        task = asyncio.create_task(orchestrator.run_pass())
        for _ in range(10):
            await asyncio.sleep(0)
        assert cache.has_data("B")
        assert not cache.has_data("A")

        release.set()
        report = await task
        assert sorted(report.succeeded) == ["A", "B"]

    @pytest.mark.asyncio
    async def test_one_fetch_in_flight_per_account(self, registry, cache, factory):
        """Verify overlapping fetches of one account are serialized"""
        orchestrator = FetchOrchestrator(registry, cache)
        in_flight = 0
        max_in_flight = 0

        async def tracked_fetch():
            nonlocal in_flight, max_in_flight
            in_flight += 1
            max_in_flight = max(max_in_flight, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return make_snapshot("A")

        factory.connectors["A"].fetch_snapshot = tracked_fetch

        await asyncio.gather(orchestrator.fetch_account("A"), orchestrator.fetch_account("A"))

        assert max_in_flight == 1


class TestSlowFetch:
    """Tests for fetches that take time on the clock"""

    @staticmethod
    def make_slow(connector, clock, duration_ms):
        original = connector.fetch_snapshot

        async def slow_fetch():
            clock.advance(duration_ms)
            return await original()

        connector.fetch_snapshot = slow_fetch

    @pytest.mark.asyncio
    async def test_backoff_counts_from_failure_time(self, orchestrator, factory, registry, clock):
        """Verify the backoff window starts when the failing call returns"""
        connector = factory.connectors["A"]
        connector.fail_next(5)
        self.make_slow(connector, clock, 20_000)

        for _ in range(5):
            await orchestrator.fetch_account("A")

        assert registry.entry("A").state.backoff_until == clock() + 30_000

    @pytest.mark.asyncio
    async def test_success_stamped_at_completion(self, orchestrator, factory, registry, clock):
        """Verify a slow success records the time the snapshot arrived"""
        self.make_slow(factory.connectors["A"], clock, 20_000)

        await orchestrator.fetch_account("A")

        assert registry.entry("A").state.last_fetch_timestamp == clock()
