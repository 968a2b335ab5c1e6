"""
Health Reporter

Read-only projection of every initialized account's fetch state:

    in_backoff = backoff_until > now
    healthy    = last fetch succeeded less than HEALTH_WINDOW_MS ago
                 and the account is not in backoff

Accounts whose connector never initialized are not reported.
"""

from typing import Callable, Dict, Optional

from core.account_registry import AccountRegistry
from core.fetch_state import HEALTH_WINDOW_MS
from core.schemas import AccountHealth
from core.utils.time import ms_to_iso, now_ms


class HealthReporter:
    """
    Example:
        >>> reporter = HealthReporter(registry)
        >>> reporter.report()["SF1"].healthy
        True
    """

    def __init__(
        self,
        registry: AccountRegistry,
        health_window_ms: int = HEALTH_WINDOW_MS,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.registry = registry
        self.health_window_ms = health_window_ms
        self.clock = clock or now_ms

    def report(self, now: Optional[int] = None) -> Dict[str, AccountHealth]:
        """Health record per initialized account."""
        now = self.clock() if now is None else now
        status: Dict[str, AccountHealth] = {}

        for name in self.registry.initialized_names():
            entry = self.registry.entry(name)
            state = entry.state.copy()

            last_fetch = state.last_fetch_timestamp
            since_last = now - last_fetch
            in_backoff = state.in_backoff(now)
            healthy = last_fetch > 0 and since_last < self.health_window_ms and not in_backoff

            status[name] = AccountHealth(
                healthy=healthy,
                last_fetch=ms_to_iso(last_fetch),
                time_since_last_fetch=round(since_last / 1000) if last_fetch else None,
                in_backoff=in_backoff,
                backoff_ends=ms_to_iso(state.backoff_until) if in_backoff else None,
                error_count=state.consecutive_error_count,
                config=entry.config.public_view(),
            )

        return status

    def all_healthy(self, now: Optional[int] = None) -> bool:
        report = self.report(now)
        return bool(report) and all(h.healthy for h in report.values())
