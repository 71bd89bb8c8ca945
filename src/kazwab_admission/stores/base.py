"""Window store interface."""

from abc import ABC, abstractmethod

from kazwab_admission.models import Decision, Policy, WindowCounter


class WindowStore(ABC):
    """Fixed-window request counters keyed by (client key, policy scope).

    Stores that do network I/O set ``blocking_io`` so async callers run
    them in a worker thread.
    """

    blocking_io = False

    @abstractmethod
    def check_and_increment(self, key: str, policy: Policy, now: float) -> Decision:
        """Count one request and decide whether it is admitted.

        Read, check and increment happen as one atomic step per key and
        scope. A counter whose window has closed (``now >= window_end``)
        starts a fresh window with the request counted as its first.
        """

    @abstractmethod
    def decrement(self, key: str, policy: Policy) -> None:
        """Give back one request, floored at zero. No-op without a counter."""

    @abstractmethod
    def reset(self, key: str, policy: Policy) -> None:
        """Drop the counter so the next request opens a fresh window."""

    @abstractmethod
    def sweep(self, now: float) -> int:
        """Delete every counter with ``window_end <= now``.

        Returns: number of counters removed
        """

    @abstractmethod
    def peek(self, key: str, policy: Policy, now: float) -> WindowCounter | None:
        """Return a copy of the live counter, or None if absent or expired."""

    def open(self) -> None:
        """Acquire backing resources."""

    def close(self) -> None:
        """Release backing resources."""

    def health_check(self) -> bool:
        """Check if the store is usable."""
        return True
