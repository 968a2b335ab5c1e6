"""
Fetch Orchestrator - Per-Account Fetch Decisions

On every pass, for each initialized account:

    1. backoff_until > now  -> skip, connector not called, state unchanged
    2. otherwise call connector.fetch_snapshot()
         success -> cache.put(), state.record_success(done)
         failure -> cache untouched (stale data stays), state.record_failure(done)

    "now" is read before the call and "done" after it returns.

Concurrency:
    - Accounts of one pass are fetched concurrently by default, so a slow
      account never delays the others. Sequential mode is available.
    - Each account has its own asyncio.Lock; at most one fetch per account
      is in flight, and its state transitions happen in completion order.

Fetch failures never escape this module. Results are returned as FetchResult
records so callers (and tests) can observe outcomes without parsing logs.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from core.account_registry import AccountRegistry
from core.fetch_state import BackoffPolicy
from core.logging import get_logger
from core.utils.time import now_ms
from storage.snapshot_cache import SnapshotCache


class FetchOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED_BACKOFF = "skipped_backoff"
    NOT_INITIALIZED = "not_initialized"


@dataclass
class FetchResult:
    """Outcome of one account's fetch attempt."""

    account: str
    outcome: FetchOutcome
    error: Optional[str] = None
    backoff_ms: int = 0
    error_count: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome == FetchOutcome.SUCCESS


@dataclass
class PassReport:
    """Results of one full fetch pass."""

    started_at: int
    finished_at: int = 0
    results: List[FetchResult] = field(default_factory=list)

    def by_outcome(self, outcome: FetchOutcome) -> List[str]:
        return [r.account for r in self.results if r.outcome == outcome]

    @property
    def succeeded(self) -> List[str]:
        return self.by_outcome(FetchOutcome.SUCCESS)

    @property
    def failed(self) -> List[str]:
        return self.by_outcome(FetchOutcome.FAILED)

    @property
    def skipped(self) -> List[str]:
        return self.by_outcome(FetchOutcome.SKIPPED_BACKOFF)


class FetchOrchestrator:
    """
    Drives fetches for every registered account and applies the backoff policy.

    Args:
        registry: Account registry (connectors + fetch state)
        cache: Snapshot cache written on success
        policy: Backoff policy
        clock: Millisecond clock; injectable for tests
        concurrent: Fetch accounts of a pass concurrently

    Example:
        >>> orchestrator = FetchOrchestrator(registry, cache)
        >>> report = await orchestrator.run_pass()
        >>> report.succeeded
        ['SF1', 'PM1']
    """

    def __init__(
        self,
        registry: AccountRegistry,
        cache: SnapshotCache,
        policy: Optional[BackoffPolicy] = None,
        clock: Optional[Callable[[], int]] = None,
        concurrent: bool = True,
    ):
        self.registry = registry
        self.cache = cache
        self.policy = policy or BackoffPolicy()
        self.clock = clock or now_ms
        self.concurrent = concurrent
        self._account_locks: Dict[str, asyncio.Lock] = {}
        self._logger = get_logger(__name__)

    def _lock_for(self, name: str) -> asyncio.Lock:
        lock = self._account_locks.get(name)
        if lock is None:
            lock = self._account_locks[name] = asyncio.Lock()
        return lock

    # ============================================
    # Single Account
    # ============================================

    async def fetch_account(self, name: str) -> FetchResult:
        """
        Run the fetch decision procedure for one account.

        Never raises for connector failures; they are folded into the
        account's fetch state and reported in the result.
        """
        async with self._lock_for(name):
            entry = self.registry.entry(name)
            if entry is None or entry.connector is None:
                self._logger.error(f"No initialized connector for account: {name}")
                return FetchResult(account=name, outcome=FetchOutcome.NOT_INITIALIZED)

            state = entry.state
            # backoff check uses the pre-call time; outcomes use the time the call returned
            now = self.clock()

            if state.in_backoff(now):
                remaining = round((state.backoff_until - now) / 1000)
                self._logger.info(f"Skipping {name} fetch due to backoff. Next attempt in {remaining}s")
                return FetchResult(
                    account=name,
                    outcome=FetchOutcome.SKIPPED_BACKOFF,
                    error_count=state.consecutive_error_count,
                )

            self._logger.debug(f"Fetching data from account: {name}...")
            try:
                snapshot = await entry.connector.fetch_snapshot()
            except Exception as e:
                backoff = state.record_failure(self.clock(), self.policy)
                message = str(e) or e.__class__.__name__
                self._logger.warning(
                    f"Error fetching data for account {name}: {message} "
                    f"(consecutive errors: {state.consecutive_error_count})"
                )
                if backoff:
                    self._logger.warning(
                        f"Too many consecutive errors for account {name}. Backing off for {backoff / 1000:.0f}s"
                    )
                return FetchResult(
                    account=name,
                    outcome=FetchOutcome.FAILED,
                    error=message,
                    backoff_ms=backoff,
                    error_count=state.consecutive_error_count,
                )

            self.cache.put(name, snapshot)
            state.record_success(self.clock())
            self._logger.debug(f"✓ {name}: {len(snapshot.positions)} position(s)")
            return FetchResult(account=name, outcome=FetchOutcome.SUCCESS)

    # ============================================
    # Full Pass
    # ============================================

    async def run_pass(self) -> PassReport:
        """
        Attempt every initialized account once.

        Returns:
            PassReport: One FetchResult per initialized account
        """
        names = self.registry.initialized_names()
        report = PassReport(started_at=self.clock())

        if self.concurrent:
            outcomes = await asyncio.gather(
                *(self.fetch_account(name) for name in names),
                return_exceptions=True,
            )
        else:
            outcomes = []
            for name in names:
                try:
                    outcomes.append(await self.fetch_account(name))
                except Exception as e:
                    outcomes.append(e)

        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, FetchResult):
                report.results.append(outcome)
            elif isinstance(outcome, Exception):
                # orchestration fault (not a connector failure); isolate it
                self._logger.error(f"Unexpected error while fetching {name}: {outcome}")
                report.results.append(
                    FetchResult(account=name, outcome=FetchOutcome.FAILED, error=str(outcome))
                )
            else:
                raise outcome

        report.finished_at = self.clock()
        self._logger.info(
            f"Fetch pass finished: {len(report.succeeded)} ok, {len(report.failed)} failed, "
            f"{len(report.skipped)} in backoff ({report.finished_at - report.started_at}ms)"
        )
        return report
