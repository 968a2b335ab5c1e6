"""
Account Fetch State and Backoff Policy

Each registered account carries one AccountFetchState. The fetch
orchestrator is its only writer; the health reporter reads it.

Failure Policy (two phases):
    1. Below FAILURE_THRESHOLD consecutive failures, errors are counted but
       the account keeps being polled every pass.
    2. From the threshold on, each failure pushes backoff_until forward by
           INITIAL_BACKOFF_MS * 2 ** min(count - FAILURE_THRESHOLD, BACKOFF_CAP_EXPONENT)
       i.e. 30s, 60s, 120s, ... capped at 30s * 32 = 960s.

    Any success resets the count and the backoff.

All timestamps are epoch milliseconds; 0 means "never" / "no backoff".
"""

from dataclasses import dataclass


FAILURE_THRESHOLD = 5
INITIAL_BACKOFF_MS = 30_000
BACKOFF_CAP_EXPONENT = 5
HEALTH_WINDOW_MS = 60_000
FETCH_INTERVAL_MS = 40_000


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Parameters of the consecutive-failure backoff.

    Example:
        >>> policy = BackoffPolicy()
        >>> [policy.backoff_ms(n) for n in (4, 5, 6, 10, 11, 20)]
        [0, 30000, 60000, 960000, 960000, 960000]
    """

    failure_threshold: int = FAILURE_THRESHOLD
    initial_backoff_ms: int = INITIAL_BACKOFF_MS
    cap_exponent: int = BACKOFF_CAP_EXPONENT

    def backoff_ms(self, consecutive_errors: int) -> int:
        """Backoff duration after the given number of consecutive errors (0 below threshold)."""
        if consecutive_errors < self.failure_threshold:
            return 0
        exponent = min(consecutive_errors - self.failure_threshold, self.cap_exponent)
        return self.initial_backoff_ms * (2 ** exponent)


@dataclass
class AccountFetchState:
    """
    Mutable resilience record of one account.

    Attributes:
        last_fetch_timestamp: Time of the last successful fetch (0 = never)
        consecutive_error_count: Failures since the last success
        backoff_until: Fetches are skipped while now < backoff_until (0 = none)
    """

    last_fetch_timestamp: int = 0
    consecutive_error_count: int = 0
    backoff_until: int = 0

    def in_backoff(self, now: int) -> bool:
        return self.backoff_until > now

    def record_success(self, now: int) -> None:
        self.last_fetch_timestamp = now
        self.consecutive_error_count = 0
        self.backoff_until = 0

    def record_failure(self, now: int, policy: BackoffPolicy) -> int:
        """
        Count a failed fetch and recompute the backoff.

        Returns:
            int: Backoff duration applied in ms (0 while below threshold)
        """
        self.consecutive_error_count += 1
        backoff = policy.backoff_ms(self.consecutive_error_count)
        if backoff:
            self.backoff_until = now + backoff
        return backoff

    def copy(self) -> "AccountFetchState":
        return AccountFetchState(
            last_fetch_timestamp=self.last_fetch_timestamp,
            consecutive_error_count=self.consecutive_error_count,
            backoff_until=self.backoff_until,
        )
