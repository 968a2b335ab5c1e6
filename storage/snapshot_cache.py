"""
In-Memory Snapshot Cache

Holds the latest ExchangeSnapshot per account plus the globally selected
"current account".

Guarantees:
    - put() swaps a whole snapshot (positions and summary together); readers
      never see a position list from one fetch with the summary of another.
    - Stale entries are kept: a failed fetch never touches the cache, so a
      consumer always sees the last good snapshot (or none yet).
    - get() returns an independent deep copy; mutating it cannot corrupt
      the cache.

A threading.Lock guards the maps because FastAPI may serve plain `def`
endpoints from its threadpool while the fetch loop writes from the event loop.
"""

import threading
from typing import Any, Dict, List, Optional

from core.errors import UnknownAccountError
from core.schemas import AccountConfig, CacheView, ExchangeSnapshot
from core.utils.time import ms_to_iso, now_ms


class SnapshotCache:
    """
    Latest known data per account.

    Example:
        >>> cache = SnapshotCache()
        >>> cache.add_account(config)
        >>> cache.put("SF1", snapshot)
        >>> view = cache.get()
        >>> view.accounts["SF1"].account_summary.base_balance
        1000.0
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshots: Dict[str, ExchangeSnapshot] = {}
        self._known: List[str] = []
        self._configs: Dict[str, Dict[str, Any]] = {}
        self._current: str = ""

    # ============================================
    # Writes
    # ============================================

    def add_account(self, config: AccountConfig) -> None:
        """Record a registered account name and its public config."""
        with self._lock:
            if config.name not in self._known:
                self._known.append(config.name)
            self._configs[config.name] = config.public_view()

    def put(self, account_name: str, snapshot: ExchangeSnapshot) -> None:
        """Replace the account's snapshot as one unit."""
        stored = snapshot.model_copy(deep=True)
        with self._lock:
            self._snapshots[account_name] = stored

    def set_current(self, account_name: str) -> None:
        """
        Select the current account.

        Raises:
            UnknownAccountError: If the name was never registered; the
                                 selection is left unchanged.
        """
        with self._lock:
            if account_name not in self._known:
                raise UnknownAccountError(account_name)
            self._current = account_name

    # ============================================
    # Reads
    # ============================================

    def get(self) -> CacheView:
        """Independent copy of the whole cache."""
        with self._lock:
            view = CacheView(
                accounts={name: snap.model_copy(deep=True) for name, snap in self._snapshots.items()},
                current_account=self._current,
                available_accounts=list(self._known),
                account_configs={name: dict(cfg) for name, cfg in self._configs.items()},
            )
        view.last_update = ms_to_iso(now_ms())
        return view

    def get_account(self, account_name: str) -> Optional[ExchangeSnapshot]:
        """Copy of one account's snapshot, or None if it never fetched."""
        with self._lock:
            snapshot = self._snapshots.get(account_name)
            return snapshot.model_copy(deep=True) if snapshot is not None else None

    def has_data(self, account_name: str) -> bool:
        with self._lock:
            return account_name in self._snapshots

    @property
    def current_account(self) -> str:
        with self._lock:
            return self._current

    def __len__(self) -> int:
        with self._lock:
            return len(self._snapshots)
