"""In-process window store.

Counters live in one dict guarded by one lock. Nothing inside the lock
blocks or awaits, so the store is safe to call from threads and from the
event loop alike. Counters are lost on restart.
"""

import threading
from dataclasses import replace

import structlog

from kazwab_admission.models import Decision, Policy, WindowCounter
from kazwab_admission.stores.base import WindowStore

logger = structlog.get_logger()


class InMemoryWindowStore(WindowStore):
    """Window store backed by a process-local dict."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[tuple[str, str], WindowCounter] = {}

    def check_and_increment(self, key: str, policy: Policy, now: float) -> Decision:
        slot = (key, policy.scope)
        with self._lock:
            counter = self._counters.get(slot)

            # now < window_start (clock going backwards) keeps the window
            if counter is None or now >= counter.window_end:
                counter = WindowCounter(
                    key=key,
                    scope=policy.scope,
                    count=1,
                    window_start=now,
                    window_end=now + policy.window_seconds,
                )
                self._counters[slot] = counter
                return Decision.for_counter(counter, policy, now, admitted=True)

            if counter.count < policy.max_requests:
                counter.count += 1
                return Decision.for_counter(counter, policy, now, admitted=True)

            return Decision.for_counter(counter, policy, now, admitted=False)

    def decrement(self, key: str, policy: Policy) -> None:
        with self._lock:
            counter = self._counters.get((key, policy.scope))
            if counter is not None and counter.count > 0:
                counter.count -= 1

    def reset(self, key: str, policy: Policy) -> None:
        with self._lock:
            self._counters.pop((key, policy.scope), None)

    def sweep(self, now: float) -> int:
        with self._lock:
            expired = [slot for slot, counter in self._counters.items() if counter.window_end <= now]
            for slot in expired:
                del self._counters[slot]
            remaining = len(self._counters)

        logger.debug("memory_store_swept", removed=len(expired), remaining=remaining)
        return len(expired)

    def peek(self, key: str, policy: Policy, now: float) -> WindowCounter | None:
        with self._lock:
            counter = self._counters.get((key, policy.scope))
            if counter is None or counter.expired(now):
                return None
            return replace(counter)

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters)
