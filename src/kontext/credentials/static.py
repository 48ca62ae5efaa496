"""
Credential kinds without expiry metadata.

Static bearer tokens and basic auth carry nothing that says when they stop
working, so their staleness is always UNKNOWN and they cannot be refreshed.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from kontext.credentials.base import (
    CredentialKind,
    CredentialKindRegistry,
    ExpiryStatus,
    StatusProbe,
)


@CredentialKindRegistry.register
class StaticTokenCredential(CredentialKind):
    """Bearer token given inline (``token``) or by file (``tokenFile``)."""

    tag = "token"
    fields = ("token", "tokenFile")
    priority = 40

    def inspect_expiry(
        self,
        now: datetime,
        margin: timedelta,
        probe: StatusProbe | None = None,
        probe_timeout: float = 10.0,
    ) -> ExpiryStatus:
        return ExpiryStatus.unknown("static token")


@CredentialKindRegistry.register
class BasicAuthCredential(CredentialKind):
    """Username and password."""

    tag = "basic"
    fields = ("username", "password")
    priority = 50

    def inspect_expiry(
        self,
        now: datetime,
        margin: timedelta,
        probe: StatusProbe | None = None,
        probe_timeout: float = 10.0,
    ) -> ExpiryStatus:
        return ExpiryStatus.unknown("basic auth")


@CredentialKindRegistry.register
class NoCredential(CredentialKind):
    """A user entry with no recognized credential (anonymous access)."""

    tag = "none"
    priority = 1000

    @classmethod
    def matches(cls, fields: Mapping[str, Any]) -> bool:
        return True

    def inspect_expiry(
        self,
        now: datetime,
        margin: timedelta,
        probe: StatusProbe | None = None,
        probe_timeout: float = 10.0,
    ) -> ExpiryStatus:
        return ExpiryStatus.unknown("no credential")
