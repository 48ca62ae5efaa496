"""
Credential refresh engine.

CredentialRefresher decides whether a user's credential is stale and, when
asked, obtains a new one through the credential kind's refresh action. It
makes exactly one attempt per call; a failure is reported, never retried.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from kontext.config.settings import (
    DEFAULT_EXPIRY_MARGIN_SECONDS,
    DEFAULT_PROBE_TIMEOUT_SECONDS,
    DEFAULT_REFRESH_TIMEOUT_SECONDS,
)
from kontext.credentials.actions import ExecStatusProbe
from kontext.credentials.base import (
    CredentialKind,
    ExpiryStatus,
    RefreshAction,
    RefreshedCredential,
    Staleness,
    StatusProbe,
)
from kontext.errors import (
    AuthProviderUnsupportedError,
    RefreshActionError,
    RefreshFailedError,
)

if TYPE_CHECKING:
    from kontext.config.settings import Settings
    from kontext.kubeconfig.models import User

logger = logging.getLogger(__name__)


@dataclass
class RefreshResult:
    """
    Outcome of a refresh call.

    Attributes:
        user: Name of the user whose credential was considered.
        kind: Credential kind tag.
        refreshed: True if the external action ran and succeeded.
        status: Expiry status before refreshing.
        credential: The new credential, when one was obtained.
    """

    user: str
    kind: str
    refreshed: bool
    status: ExpiryStatus
    credential: RefreshedCredential | None = None

    @property
    def new_expiry(self) -> datetime | None:
        if self.credential is not None:
            return self.credential.expiry
        return self.status.expiry


class CredentialRefresher:
    """
    Inspect and refresh credentials.

    Usage:
        refresher = CredentialRefresher(timeout=30)
        status = refresher.inspect(user)
        result = refresher.refresh(user, force=False)

    Args:
        action: Refresh action used for every refreshable kind. If None, each
            kind's default action is used.
        probe: Status probe for kinds without cached expiry. Defaults to
            running exec plugins.
        timeout: Seconds a refresh action may take.
        probe_timeout: Seconds a status probe may take.
        margin_seconds: Credentials expiring within this window are expired.
        clock: Returns the current aware UTC time.
    """

    def __init__(
        self,
        action: RefreshAction | None = None,
        probe: StatusProbe | None = None,
        timeout: float = DEFAULT_REFRESH_TIMEOUT_SECONDS,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
        margin_seconds: float = DEFAULT_EXPIRY_MARGIN_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.action = action
        self.probe = probe if probe is not None else ExecStatusProbe()
        self.timeout = timeout
        self.probe_timeout = probe_timeout
        self.margin = timedelta(seconds=margin_seconds)
        self._clock = clock or (lambda: datetime.now(UTC))

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> CredentialRefresher:
        """Build a refresher using the timing values from settings."""
        return cls(
            timeout=settings.refresh.timeout_seconds,
            probe_timeout=settings.refresh.probe_timeout_seconds,
            margin_seconds=settings.refresh.expiry_margin_seconds,
            **kwargs,
        )

    def inspect(self, user: User) -> ExpiryStatus:
        """
        Determine the staleness of a user's credential.

        Never raises for inconclusive results: those are UNKNOWN.
        """
        status = user.auth.inspect_expiry(
            self._clock(),
            self.margin,
            probe=self.probe,
            probe_timeout=self.probe_timeout,
        )
        logger.debug(
            f"User '{user.name}' ({user.auth.tag}) is {status.staleness.value}"
            + (f" (expires {status.expiry.isoformat()})" if status.expiry else "")
        )
        return status

    def refresh(self, user: User, force: bool = False) -> RefreshResult:
        """
        Refresh a user's credential in place.

        A FRESH credential is left alone unless ``force`` is set. On failure
        the user's credential is not modified.

        Raises:
            AuthProviderUnsupportedError: If the kind cannot be refreshed or
                has no action available.
            RefreshFailedError: If the action errors or times out.
        """
        auth = user.auth
        if not auth.supports_refresh:
            raise AuthProviderUnsupportedError(user.name, auth.tag)

        status = self.inspect(user)
        if status.staleness is Staleness.FRESH and not force:
            logger.info(f"Credential for user '{user.name}' is fresh; nothing to do")
            return RefreshResult(user.name, auth.tag, refreshed=False, status=status)

        action = self._action_for(auth)
        if action is None:
            raise AuthProviderUnsupportedError(user.name, auth.tag)

        logger.info(f"Refreshing {auth.tag} credential for user '{user.name}'")
        try:
            credential = auth.refresh(action, self.timeout)
        except RefreshActionError as e:
            raise RefreshFailedError(user.name, str(e)) from e
        except TimeoutError as e:
            raise RefreshFailedError(
                user.name, f"timed out after {self.timeout:.0f}s"
            ) from e
        except OSError as e:
            raise RefreshFailedError(user.name, str(e)) from e
        except (TypeError, ValueError, AttributeError) as e:
            raise RefreshFailedError(user.name, f"unusable response: {e}") from e

        user.auth = auth.with_refreshed(credential)
        logger.info(f"Refreshed credential for user '{user.name}'")
        return RefreshResult(
            user.name, auth.tag, refreshed=True, status=status, credential=credential
        )

    def _action_for(self, auth: CredentialKind) -> RefreshAction | None:
        if self.action is not None:
            return self.action
        return auth.default_action()
