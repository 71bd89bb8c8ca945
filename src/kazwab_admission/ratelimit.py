"""FastAPI integration: client keys, per-route dependencies, 429 responses."""

import math
import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import MutableHeaders

from kazwab_admission.config import get_settings
from kazwab_admission.controller import get_controller
from kazwab_admission.errors import RateLimitExceeded
from kazwab_admission.metrics import metrics
from kazwab_admission.models import Decision, Policy
from kazwab_admission.policies import PolicyScope


def resolve_client_key(request: Request) -> str:
    """Resolve the rate limit key for a request.

    The first X-Forwarded-For hop is only honoured when ``trust_proxy`` is
    enabled; otherwise the socket peer address is used.
    """
    if get_settings().trust_proxy:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit_headers(policy: Policy, decision: Decision) -> dict[str, str]:
    """Standard RateLimit-* headers for a decision."""
    return {
        "RateLimit-Policy": policy.header_value(),
        "RateLimit-Limit": str(decision.limit),
        "RateLimit-Remaining": str(decision.remaining),
        "RateLimit-Reset": str(math.ceil(decision.reset_after)),
    }


def _apply_headers(headers: MutableHeaders, policy: Policy, decision: Decision, overwrite: bool) -> None:
    if decision.exempt or not get_settings().rate_limit_include_headers:
        return
    for name, value in rate_limit_headers(policy, decision).items():
        if overwrite:
            headers[name] = value
        else:
            headers.setdefault(name, value)


def rejection_response(policy: Policy, decision: Decision) -> JSONResponse:
    """Build the 429 response for a rejected request."""
    headers = {"Retry-After": str(decision.retry_after_header)}
    if get_settings().rate_limit_include_headers:
        headers.update(rate_limit_headers(policy, decision))
    return JSONResponse(
        status_code=429,
        content={"success": False, "message": policy.message},
        headers=headers,
    )


def _resolve_policy(policy: str | Policy) -> Policy:
    if isinstance(policy, Policy):
        return policy
    return get_controller().catalog.get(policy)


async def _admit(client_key: str, policy: Policy) -> Decision:
    controller = get_controller()
    if controller.store.blocking_io:
        return await run_in_threadpool(controller.check_and_increment, client_key, policy)
    return controller.check_and_increment(client_key, policy)


def rate_limit(policy: str | Policy) -> Callable[[Request, Response], Awaitable[None]]:
    """FastAPI dependency enforcing a route-class policy.

    Accepts a catalog scope name or a Policy for an ad-hoc limit:

        @router.post("/contact", dependencies=[Depends(rate_limit(PolicyScope.CONTACT))])
    """

    async def enforce(request: Request, response: Response) -> None:
        if not get_settings().rate_limit_enabled:
            return

        resolved = _resolve_policy(policy)
        decision = await _admit(resolve_client_key(request), resolved)
        if not decision.admitted:
            raise RateLimitExceeded(resolved, decision)
        _apply_headers(response.headers, resolved, decision, overwrite=True)

    return enforce


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Render a RateLimitExceeded raised by a route dependency."""
    return rejection_response(exc.policy, exc.decision)


async def admission_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Apply the general policy to every non-exempt request."""
    settings = get_settings()
    if not settings.rate_limit_enabled or request.url.path in settings.rate_limit_exempt_paths:
        return await call_next(request)

    policy = _resolve_policy(PolicyScope.GENERAL)
    client_key = resolve_client_key(request)
    with structlog.contextvars.bound_contextvars(client_key=client_key, path=request.url.path):
        decision = await _admit(client_key, policy)
        if not decision.admitted:
            return rejection_response(policy, decision)

        response = await call_next(request)

    # Headers set by a route-specific policy win over the general policy
    _apply_headers(response.headers, policy, decision, overwrite=False)
    return response


async def metrics_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Record HTTP metrics for each request."""
    start_time = time.perf_counter()

    response: Response = await call_next(request)

    duration = time.perf_counter() - start_time
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code,
    ).inc()
    metrics.http_request_duration.labels(
        method=request.method,
        endpoint=endpoint,
    ).observe(duration)

    return response
