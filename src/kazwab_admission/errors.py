"""Exception types for the admission controller."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kazwab_admission.models import Decision, Policy


class AdmissionError(Exception):
    """Base error for admission control failures."""


class ConfigurationError(AdmissionError):
    """Raised at setup time when a policy or setting is invalid."""


class RateLimitExceeded(AdmissionError):
    """A request was rejected by a policy.

    Only the HTTP layer raises this, to hand the rejected decision to its
    exception handler. The controller returns rejections as plain values.
    """

    def __init__(self, policy: Policy, decision: Decision) -> None:
        super().__init__(policy.message)
        self.policy = policy
        self.decision = decision
