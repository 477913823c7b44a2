"""
Pending authorization table.

Maps an issued ``state`` to the context needed to finish the callback. Each
entry is redeemable once; entries past their lifetime are never honored and
are swept opportunistically on insert.
"""

import logging
import threading
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sso_engine.exceptions import FlowStateError
from sso_engine.types.sso import PendingAuthorization
from sso_engine.utils.logging import short_id

logger = logging.getLogger(__name__)

# Upper bound on entries examined by the sweep on each insert
SWEEP_BATCH_SIZE = 64
DEFAULT_MAX_ENTRIES = 10_000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PendingAuthorizationTable:
    """
    Thread-safe, single-use store of pending redirect flows.

    Entries are kept in insertion order, which is also creation order, so
    expired entries are always at the front.
    """

    def __init__(
        self,
        ttl: timedelta = timedelta(minutes=10),
        clock: Optional[Callable[[], datetime]] = None,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        self.ttl = ttl
        self._clock = clock or _utcnow
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, PendingAuthorization]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, state: str) -> bool:
        with self._lock:
            return state in self._entries

    def put(self, state: str, entry: PendingAuthorization) -> None:
        """
        Insert a pending authorization.

        Raises:
            ValueError: If the state is already pending
        """
        with self._lock:
            if state in self._entries:
                raise ValueError("state is already pending")

            self._sweep_locked(limit=SWEEP_BATCH_SIZE)
            while len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.warning(
                    f"Pending authorization table full; evicted state {short_id(evicted)}"
                )
            self._entries[state] = entry

    def take_and_remove(self, state: str) -> PendingAuthorization:
        """
        Atomically remove and return the entry for a state.

        Raises:
            FlowStateError: If the state is unknown, already used or expired
        """
        with self._lock:
            entry = self._entries.pop(state, None)

        if entry is None:
            logger.warning(f"Unknown or already used state {short_id(state)}")
            raise FlowStateError()
        if entry.is_expired(self._clock(), self.ttl):
            logger.warning(f"Expired state {short_id(state)} for provider {entry.provider_id}")
            raise FlowStateError()
        return entry

    def sweep_expired(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        with self._lock:
            return self._sweep_locked(limit=None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _sweep_locked(self, limit: Optional[int]) -> int:
        now = self._clock()
        removed = 0
        while self._entries and (limit is None or removed < limit):
            state, oldest = next(iter(self._entries.items()))
            if not oldest.is_expired(now, self.ttl):
                break
            del self._entries[state]
            removed += 1

        if removed:
            logger.debug(f"Swept {removed} expired pending authorizations")
        return removed
