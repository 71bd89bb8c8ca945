"""Domain models for admission control."""

import math
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kazwab_admission.errors import ConfigurationError

DEFAULT_MESSAGE = "Too many requests from this IP, please try again later."


class Policy(BaseModel):
    """Rate limiting policy for one route class."""

    scope: str
    window_seconds: float = Field(..., alias="windowSeconds")
    max_requests: int = Field(..., alias="maxRequests")
    message: str = DEFAULT_MESSAGE

    model_config = ConfigDict(frozen=True, populate_by_name=True, serialize_by_alias=True)

    @field_validator("scope")
    @classmethod
    def _scope_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ConfigurationError("policy scope must be a non-empty string")
        return value

    @field_validator("window_seconds")
    @classmethod
    def _window_positive(cls, value: float) -> float:
        if not value > 0:
            raise ConfigurationError(f"window_seconds must be > 0, got {value}")
        return value

    @field_validator("max_requests")
    @classmethod
    def _max_requests_positive(cls, value: int) -> int:
        if value <= 0:
            raise ConfigurationError(f"max_requests must be > 0, got {value}")
        return value

    def header_value(self) -> str:
        """Render the policy for the RateLimit-Policy header."""
        return f"{self.max_requests};w={math.ceil(self.window_seconds)}"


@dataclass(slots=True)
class WindowCounter:
    """Request count for one (client key, scope) pair."""

    key: str
    scope: str
    count: int
    window_start: float
    window_end: float

    def expired(self, now: float) -> bool:
        """A counter whose window has closed is treated as absent."""
        return now >= self.window_end


@dataclass(frozen=True, slots=True)
class Decision:
    """Outcome of a single admission check.

    Attributes:
        admitted: Whether the request may proceed.
        remaining: Requests left in the current window, floored at 0.
        retry_after: Seconds until the window closes when rejected, else 0.
        limit: The policy's max_requests.
        reset_after: Seconds until the current window closes.
        exempt: True when the key is allowlisted and nothing was counted.
    """

    admitted: bool
    remaining: int
    retry_after: float
    limit: int
    reset_after: float
    exempt: bool = False

    @classmethod
    def for_counter(cls, counter: WindowCounter, policy: Policy, now: float, admitted: bool) -> "Decision":
        reset_after = max(0.0, counter.window_end - now)
        return cls(
            admitted=admitted,
            remaining=max(0, policy.max_requests - counter.count),
            retry_after=0.0 if admitted else reset_after,
            limit=policy.max_requests,
            reset_after=reset_after,
        )

    @classmethod
    def exempted(cls, policy: Policy) -> "Decision":
        return cls(
            admitted=True,
            remaining=policy.max_requests,
            retry_after=0.0,
            limit=policy.max_requests,
            reset_after=0.0,
            exempt=True,
        )

    @property
    def retry_after_header(self) -> int:
        """Retry-After value: whole seconds, rounded up."""
        return math.ceil(self.retry_after)


class EvaluateRequest(BaseModel):
    """Request to evaluate a client key against a policy scope."""

    client_key: str = Field(..., alias="clientKey", min_length=1)
    scope: str = Field(..., min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class EvaluateResponse(BaseModel):
    """Admission decision as returned by the admin API."""

    admitted: bool
    remaining: int
    limit: int
    retry_after: float = Field(0.0, alias="retryAfter")
    reset_after: float = Field(0.0, alias="resetAfter")
    exempt: bool = False

    model_config = ConfigDict(populate_by_name=True, serialize_by_alias=True)

    @classmethod
    def from_decision(cls, decision: Decision) -> "EvaluateResponse":
        return cls(
            admitted=decision.admitted,
            remaining=decision.remaining,
            limit=decision.limit,
            retry_after=decision.retry_after,
            reset_after=decision.reset_after,
            exempt=decision.exempt,
        )


class CounterSnapshot(BaseModel):
    """Live counter state as returned by the admin API."""

    key: str
    scope: str
    count: int
    window_start: float = Field(..., alias="windowStart")
    window_end: float = Field(..., alias="windowEnd")

    model_config = ConfigDict(populate_by_name=True, serialize_by_alias=True)

    @classmethod
    def from_counter(cls, counter: WindowCounter) -> "CounterSnapshot":
        return cls(
            key=counter.key,
            scope=counter.scope,
            count=counter.count,
            window_start=counter.window_start,
            window_end=counter.window_end,
        )
