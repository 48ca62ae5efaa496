"""
Base credential kind interface.

A kubeconfig user holds exactly one primary credential kind (a static token,
a client certificate, an auth-provider token, an exec plugin, ...). Each kind
is a subclass of CredentialKind implementing the same two capabilities:

    inspect_expiry  - decide whether the credential is fresh, expired or unknown
    refresh         - obtain a new credential through an external action

Adding a kind means adding a registered subclass; callers never branch on
the kind themselves.
"""

from __future__ import annotations

import base64
import binascii
import copy
import json
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Protocol

logger = logging.getLogger(__name__)

# fromisoformat accepts at most microsecond precision
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


# -----------------------------------------------------------------------------
# Data Classes
# -----------------------------------------------------------------------------


class Staleness(str, Enum):
    """Whether a credential's validity window has elapsed."""

    FRESH = "fresh"
    EXPIRED = "expired"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ExpiryStatus:
    """Result of inspecting a credential's expiry."""

    staleness: Staleness
    expiry: datetime | None = None
    source: str = ""

    @classmethod
    def unknown(cls, source: str = "") -> ExpiryStatus:
        return cls(Staleness.UNKNOWN, None, source)


@dataclass
class RefreshedCredential:
    """
    A credential returned by an external refresh action.

    Attributes:
        token: The new bearer token.
        expiry: When the token stops being valid, if known.
        extra: Additional values the action obtained (for example a rotated
            OIDC refresh token under "refresh_token").
    """

    token: str
    expiry: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        # Keep tokens out of logs and tracebacks
        return f"RefreshedCredential(token=<redacted>, expiry={self.expiry!r})"


class RefreshAction(Protocol):
    """External capability that obtains a new credential."""

    def __call__(self, params: dict[str, Any], timeout: float) -> RefreshedCredential:
        """
        Obtain a new credential.

        Raises:
            RefreshActionError: If no credential could be obtained, including
                when the timeout elapses.
        """
        ...


StatusProbe = Callable[[dict[str, Any], float], "datetime | None"]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse an RFC 3339 timestamp or a Unix epoch into an aware UTC datetime.

    Returns None for empty or unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _from_epoch(value)
    text = str(value).strip()
    if text.isdigit():
        return _from_epoch(int(text))
    text = _FRACTION_RE.sub(r"\1", text.replace("Z", "+00:00"))
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug(f"Unparseable timestamp: {value!r}")
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _from_epoch(seconds: float) -> datetime | None:
    try:
        return datetime.fromtimestamp(seconds, UTC)
    except (OverflowError, OSError, ValueError):
        logger.debug(f"Epoch timestamp out of range: {seconds!r}")
        return None


def format_timestamp(value: datetime) -> str:
    """Format a datetime the way kubeconfig writers do (RFC 3339, UTC, seconds)."""
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def jwt_expiry(token: Any) -> datetime | None:
    """
    Read the ``exp`` claim of a JWT without verifying it.

    Only used to decide staleness locally; the API server does the real
    verification.
    """
    if not isinstance(token, str) or token.count(".") != 2:
        return None
    payload = token.split(".")[1]
    payload += "=" * (-len(payload) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (binascii.Error, ValueError):
        return None
    if not isinstance(claims, dict):
        return None
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)) or isinstance(exp, bool):
        return None
    return _from_epoch(exp)


def classify(expiry: datetime | None, now: datetime, margin: timedelta) -> Staleness:
    """Fresh only if expiry lies beyond now plus the safety margin."""
    if expiry is None:
        return Staleness.UNKNOWN
    if expiry > now + margin:
        return Staleness.FRESH
    return Staleness.EXPIRED


def freeze(value: Any) -> Any:
    """Convert nested dicts/lists into hashable, order-insensitive tuples."""
    if isinstance(value, Mapping):
        return tuple(sorted((str(k), freeze(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return value


# -----------------------------------------------------------------------------
# Credential Kind Interface
# -----------------------------------------------------------------------------


class CredentialKind(ABC):
    """
    Abstract base class for credential kinds.

    Instances wrap the recognized fields of a kubeconfig ``user`` entry
    (``params``), in their original order. Instances are treated as
    immutable: refreshing produces a new instance, so a failed refresh
    leaves the original untouched.

    Class attributes:
        tag: Short identifier of the kind.
        fields: User entry keys this kind owns.
        priority: Detection order, lower is checked first.
        supports_refresh: Whether refresh() can obtain a new credential.
        ephemeral_fields: Keys excluded from identity() because they only
            cache short-lived values.
    """

    tag: str = "base"
    fields: tuple[str, ...] = ()
    priority: int = 100
    supports_refresh: bool = False
    ephemeral_fields: tuple[str, ...] = ()

    def __init__(self, params: dict[str, Any] | None = None) -> None:
        self.params: dict[str, Any] = params or {}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CredentialKind):
            return NotImplemented
        return self.tag == other.tag and self.params == other.params

    def __repr__(self) -> str:
        return f"{type(self).__name__}(fields={list(self.params)})"

    @classmethod
    def matches(cls, fields: Mapping[str, Any]) -> bool:
        """Return True if a user entry carries this kind of credential."""
        return any(key in fields for key in cls.fields)

    def identity(self) -> tuple[Any, ...]:
        """
        Comparison key used when deduplicating users.

        Covers the kind and its parameters, minus ephemeral cached values.
        """
        stable = {
            key: value
            for key, value in self.params.items()
            if key not in self.ephemeral_fields
        }
        return (self.tag, freeze(stable))

    def to_fields(self) -> dict[str, Any]:
        """Return the user entry fields owned by this credential."""
        return dict(self.params)

    @abstractmethod
    def inspect_expiry(
        self,
        now: datetime,
        margin: timedelta,
        probe: StatusProbe | None = None,
        probe_timeout: float = 10.0,
    ) -> ExpiryStatus:
        """
        Determine whether the credential is fresh.

        Args:
            now: Current time (aware, UTC).
            margin: Safety margin; expiring within it counts as expired.
            probe: External status probe, used by kinds without cached expiry.
            probe_timeout: Seconds the probe may take.

        Returns:
            ExpiryStatus. UNKNOWN is inconclusive, not an error.
        """
        pass

    def default_action(self) -> RefreshAction | None:
        """Refresh action used when none is injected."""
        return None

    def refresh_params(self) -> dict[str, Any]:
        """Parameters handed to the refresh action (a deep copy)."""
        return copy.deepcopy(self.params)

    def refresh(self, action: RefreshAction, timeout: float) -> RefreshedCredential:
        """
        Obtain a new credential by invoking the action exactly once.

        Raises:
            RefreshActionError: Propagated from the action.
        """
        return action(self.refresh_params(), timeout)

    def with_refreshed(self, credential: RefreshedCredential) -> CredentialKind:
        """Return a new instance carrying the refreshed credential."""
        raise NotImplementedError(f"'{self.tag}' credentials cannot be refreshed")


# -----------------------------------------------------------------------------
# Credential Kind Registry
# -----------------------------------------------------------------------------


class CredentialKindRegistry:
    """
    Registry mapping user entries to credential kinds.

    Example:
        @CredentialKindRegistry.register
        class StaticToken(CredentialKind):
            tag = "token"

        auth, leftover = CredentialKindRegistry.from_fields(user_fields)
    """

    _kinds: dict[str, type[CredentialKind]] = {}

    @classmethod
    def register(cls, kind_class: type[CredentialKind]) -> type[CredentialKind]:
        """
        Register a credential kind class.

        Can be used as a decorator.

        Raises:
            ValueError: If the kind has no tag defined.
        """
        tag = kind_class.tag
        if tag == "base":
            raise ValueError(
                f"Credential kind {kind_class.__name__} must define 'tag'"
            )
        cls._kinds[tag] = kind_class
        logger.debug(f"Registered credential kind: {tag} -> {kind_class.__name__}")
        return kind_class

    @classmethod
    def get_tags(cls) -> list[str]:
        """Registered tags in detection order."""
        return [k.tag for k in sorted(cls._kinds.values(), key=lambda k: k.priority)]

    @classmethod
    def get_kind_class(cls, tag: str) -> type[CredentialKind] | None:
        return cls._kinds.get(tag)

    @classmethod
    def known_fields(cls) -> frozenset[str]:
        """Every user entry key owned by some credential kind."""
        return frozenset(key for kind in cls._kinds.values() for key in kind.fields)

    @classmethod
    def detect(cls, fields: Mapping[str, Any]) -> type[CredentialKind]:
        """
        Pick the kind for a user entry.

        Raises:
            LookupError: If no registered kind matches.
        """
        for kind_class in sorted(cls._kinds.values(), key=lambda k: k.priority):
            if kind_class.matches(fields):
                return kind_class
        raise LookupError("No credential kind matches the user entry")

    @classmethod
    def from_fields(
        cls, fields: Mapping[str, Any]
    ) -> tuple[CredentialKind, dict[str, Any]]:
        """
        Split a user entry into its credential and the remaining fields.

        Returns:
            Tuple of (credential, leftover fields), both preserving input order.
        """
        kind_class = cls.detect(fields)
        params = {k: v for k, v in fields.items() if k in kind_class.fields}
        leftover = {k: v for k, v in fields.items() if k not in kind_class.fields}
        return kind_class(params), leftover
