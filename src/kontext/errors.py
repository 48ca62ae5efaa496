"""
Error taxonomy for kontext.

Every failure surfaced by the registry derives from KontextError. The
``user_error`` flag lets the command-line layer tell a bad request (unknown
context name, a credential that cannot be refreshed) apart from a system
failure (missing or malformed file, write failure) without parsing messages.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path


class KontextError(Exception):
    """Base exception for all kontext errors."""

    user_error: bool = False


# -----------------------------------------------------------------------------
# Persistence Errors
# -----------------------------------------------------------------------------


class ConfigNotFoundError(KontextError):
    """Raised when the kubeconfig file does not exist."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Kubeconfig not found: {path}")


class ConfigParseError(KontextError):
    """Raised when the kubeconfig cannot be decoded into the expected schema."""

    def __init__(self, path: Path | None, detail: str) -> None:
        self.path = path
        self.detail = detail
        location = f"{path}: " if path is not None else ""
        super().__init__(f"Invalid kubeconfig {location}{detail}")


class ConfigWriteError(KontextError):
    """
    Raised when the kubeconfig cannot be written.

    The original file is never left half-written: this is raised before or
    instead of the final rename.
    """

    def __init__(self, path: Path, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"Cannot write kubeconfig {path}: {detail}")


class InvariantViolationError(KontextError):
    """
    Raised when a mutation would leave the model inconsistent.

    Loading rejects inconsistent documents up front, so reaching this
    indicates a bug rather than bad input.
    """

    pass


# -----------------------------------------------------------------------------
# Lookup Errors
# -----------------------------------------------------------------------------


class ContextNotFoundError(KontextError):
    """Raised when one or more named contexts do not exist."""

    user_error = True

    def __init__(self, names: str | Iterable[str]) -> None:
        if isinstance(names, str):
            names = [names]
        self.names = list(names)
        quoted = ", ".join(f"'{name}'" for name in self.names)
        noun = "Context" if len(self.names) == 1 else "Contexts"
        super().__init__(f"{noun} not found: {quoted}")


# -----------------------------------------------------------------------------
# Credential Errors
# -----------------------------------------------------------------------------


class AuthProviderUnsupportedError(KontextError):
    """Raised when a user's credential kind has no refresh action."""

    user_error = True

    def __init__(self, user: str, kind: str) -> None:
        self.user = user
        self.kind = kind
        super().__init__(
            f"User '{user}' uses a '{kind}' credential, which cannot be refreshed"
        )


class RefreshFailedError(KontextError):
    """
    Raised when the external refresh action errors or times out.

    The underlying cause is chained via ``raise ... from`` and also kept in
    ``reason`` for message formatting.
    """

    def __init__(self, user: str, reason: str) -> None:
        self.user = user
        self.reason = reason
        super().__init__(f"Refreshing credentials for user '{user}' failed: {reason}")


class RefreshActionError(KontextError):
    """
    Raised by refresh actions and status probes when they cannot produce a result.

    The refresher converts this into RefreshFailedError for its callers.
    """

    pass
