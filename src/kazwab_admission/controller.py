"""Admission controller: admit or reject requests per client and policy."""

import time
from collections.abc import Callable, Iterable
from typing import Optional

import structlog

from kazwab_admission.config import Settings, get_settings
from kazwab_admission.errors import ConfigurationError
from kazwab_admission.metrics import metrics
from kazwab_admission.models import Decision, Policy, WindowCounter
from kazwab_admission.policies import PolicyCatalog
from kazwab_admission.stores import InMemoryWindowStore, RedisWindowStore, WindowStore

logger = structlog.get_logger()

DEFAULT_ALLOWLIST = frozenset({"127.0.0.1", "::1"})


class AdmissionController:
    """Generic fixed-window admission control, parameterized by Policy.

    One controller serves every route class. Allowlisted client keys are
    admitted without touching the store; everything else is counted in the
    store under (client key, policy scope).
    """

    def __init__(
        self,
        store: Optional[WindowStore] = None,
        catalog: Optional[PolicyCatalog] = None,
        allowlist: Iterable[str] = DEFAULT_ALLOWLIST,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store if store is not None else InMemoryWindowStore()
        self.catalog = catalog if catalog is not None else PolicyCatalog()
        self.allowlist = frozenset(allowlist)
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    def check_and_increment(self, key: str, policy: Policy, now: Optional[float] = None) -> Decision:
        """Decide admission for one request and count it.

        Rejections are returned as values (``admitted=False``), never raised.

        Raises:
            ValueError: If key is empty.
        """
        if not key:
            raise ValueError("key must be a non-empty string")

        if key in self.allowlist:
            metrics.decisions_total.labels(scope=policy.scope, result="exempt").inc()
            return Decision.exempted(policy)

        if now is None:
            now = self._clock()

        started = time.perf_counter()
        decision = self.store.check_and_increment(key, policy, now)
        metrics.check_duration.labels(scope=policy.scope).observe(time.perf_counter() - started)

        if decision.admitted:
            metrics.decisions_total.labels(scope=policy.scope, result="admitted").inc()
            logger.debug(
                "request_admitted",
                scope=policy.scope,
                client_key=key,
                remaining=decision.remaining,
            )
        else:
            metrics.decisions_total.labels(scope=policy.scope, result="rejected").inc()
            logger.warning(
                "rate_limit_exceeded",
                scope=policy.scope,
                client_key=key,
                limit=policy.max_requests,
                retry_after=round(decision.retry_after, 3),
            )

        return decision

    def decrement(self, key: str, policy: Policy) -> None:
        """Refund one counted request for key under policy."""
        self.store.decrement(key, policy)
        logger.debug("request_refunded", scope=policy.scope, client_key=key)

    def reset(self, key: str, policy: Policy) -> None:
        """Forget key's counter under policy."""
        self.store.reset(key, policy)
        logger.info("counter_reset", scope=policy.scope, client_key=key)

    def sweep(self, now: Optional[float] = None) -> int:
        """Remove expired counters. Returns how many were removed."""
        if now is None:
            now = self._clock()
        removed = self.store.sweep(now)
        metrics.swept_counters_total.inc(removed)
        logger.info("counters_swept", removed=removed)
        return removed

    def peek(self, key: str, policy: Policy, now: Optional[float] = None) -> Optional[WindowCounter]:
        """Return key's live counter under policy, if any."""
        if now is None:
            now = self._clock()
        return self.store.peek(key, policy, now)

    def open(self) -> None:
        self.store.open()

    def close(self) -> None:
        self.store.close()

    def health_check(self) -> bool:
        return self.store.health_check()


def build_controller(settings: Settings) -> AdmissionController:
    """Build a controller from settings."""
    catalog = PolicyCatalog.from_settings(settings)

    if settings.rate_limit_backend == "memory":
        store: WindowStore = InMemoryWindowStore()
        clock = time.monotonic
    elif settings.rate_limit_backend == "redis":
        # Counters are shared across processes, so every process needs the same clock
        store = RedisWindowStore.from_settings(settings)
        clock = time.time
    else:
        raise ConfigurationError(f"unknown rate limit backend {settings.rate_limit_backend!r}")

    logger.info(
        "admission_controller_built",
        backend=settings.rate_limit_backend,
        policies=len(catalog),
        allowlist=len(settings.rate_limit_allowlist),
    )
    return AdmissionController(
        store=store,
        catalog=catalog,
        allowlist=settings.rate_limit_allowlist,
        clock=clock,
    )


# Singleton instance
_controller: Optional[AdmissionController] = None


def get_controller() -> AdmissionController:
    """Get the controller singleton."""
    global _controller
    if _controller is None:
        _controller = build_controller(get_settings())
    return _controller


def close_controller() -> None:
    """Close the controller singleton; the next get_controller() builds a new one."""
    global _controller
    if _controller is not None:
        _controller.close()
        _controller = None
