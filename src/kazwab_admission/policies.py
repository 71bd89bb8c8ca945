"""Policy catalog: one rate limiting policy per route class."""

from collections.abc import Iterator, Mapping
from enum import StrEnum

import structlog

from kazwab_admission.config import PolicyOverride, Settings
from kazwab_admission.errors import ConfigurationError
from kazwab_admission.models import Policy

logger = structlog.get_logger()

MINUTE = 60.0
HOUR = 60 * MINUTE


class PolicyScope(StrEnum):
    """Built-in route classes."""

    GENERAL = "general"
    AUTH = "auth"
    UPLOAD = "upload"
    CONTACT = "contact"
    NEWSLETTER = "newsletter"
    SEARCH = "search"


DEFAULT_POLICIES: dict[str, Policy] = {
    PolicyScope.GENERAL: Policy(
        scope=PolicyScope.GENERAL,
        window_seconds=15 * MINUTE,
        max_requests=100,
        message="Too many requests from this IP, please try again later.",
    ),
    PolicyScope.AUTH: Policy(
        scope=PolicyScope.AUTH,
        window_seconds=15 * MINUTE,
        max_requests=5,
        message="Too many authentication attempts, please try again later.",
    ),
    PolicyScope.UPLOAD: Policy(
        scope=PolicyScope.UPLOAD,
        window_seconds=HOUR,
        max_requests=10,
        message="Too many file uploads, please try again later.",
    ),
    PolicyScope.CONTACT: Policy(
        scope=PolicyScope.CONTACT,
        window_seconds=HOUR,
        max_requests=3,
        message="Too many contact form submissions, please try again later.",
    ),
    PolicyScope.NEWSLETTER: Policy(
        scope=PolicyScope.NEWSLETTER,
        window_seconds=HOUR,
        max_requests=5,
        message="Too many newsletter subscription attempts, please try again later.",
    ),
    PolicyScope.SEARCH: Policy(
        scope=PolicyScope.SEARCH,
        window_seconds=5 * MINUTE,
        max_requests=30,
        message="Too many search requests, please try again later.",
    ),
}


class PolicyCatalog:
    """Policies looked up by scope name."""

    def __init__(self, policies: Mapping[str, Policy] | None = None) -> None:
        source = DEFAULT_POLICIES if policies is None else policies
        self._policies: dict[str, Policy] = {str(scope): policy for scope, policy in source.items()}

    @classmethod
    def from_settings(cls, settings: Settings) -> "PolicyCatalog":
        """Build the default catalog with configured overrides applied."""
        catalog = cls()
        for scope, override in settings.rate_limit_policy_overrides.items():
            catalog.apply_override(scope, override)
        return catalog

    def get(self, scope: str) -> Policy:
        """Return the policy for a scope.

        Raises:
            ConfigurationError: If no policy is registered for the scope.
        """
        try:
            return self._policies[str(scope)]
        except KeyError:
            raise ConfigurationError(f"no rate limit policy for scope {scope!r}") from None

    def register(self, policy: Policy) -> Policy:
        """Add or replace a policy, e.g. an ad-hoc limit for one endpoint."""
        self._policies[policy.scope] = policy
        logger.info(
            "policy_registered",
            scope=policy.scope,
            window_seconds=policy.window_seconds,
            max_requests=policy.max_requests,
        )
        return policy

    def apply_override(self, scope: str, override: PolicyOverride) -> Policy:
        """Replace parts of an existing policy or define a new scope."""
        changes = override.model_dump(exclude_none=True)
        current = self._policies.get(scope)
        if current is None:
            if override.window_seconds is None or override.max_requests is None:
                raise ConfigurationError(
                    f"override for new scope {scope!r} needs window_seconds and max_requests"
                )
            return self.register(Policy(scope=scope, **changes))
        return self.register(Policy(**{**current.model_dump(by_alias=False), **changes}))

    def __contains__(self, scope: object) -> bool:
        return str(scope) in self._policies

    def __iter__(self) -> Iterator[Policy]:
        return iter(self._policies.values())

    def __len__(self) -> int:
        return len(self._policies)
