"""
Exec plugin credentials.

Client-go exec plugins (kubelogin, aws-iam-authenticator, gke-gcloud-auth-plugin,
...) mint tokens on demand and keep their own cache; the kubeconfig only holds
the command to run. Staleness therefore comes from a status probe that asks
the plugin, and refreshing runs the plugin so that its cache is renewed. The
kubeconfig entry itself does not change.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timedelta
from typing import Any

from kontext.credentials.actions import ExecPluginAction
from kontext.credentials.base import (
    CredentialKind,
    CredentialKindRegistry,
    ExpiryStatus,
    RefreshAction,
    RefreshedCredential,
    StatusProbe,
    classify,
    freeze,
)
from kontext.errors import RefreshActionError

logger = logging.getLogger(__name__)


@CredentialKindRegistry.register
class ExecPluginCredential(CredentialKind):
    """Credential produced by an external exec plugin."""

    tag = "exec"
    fields = ("exec",)
    priority = 10
    supports_refresh = True

    @property
    def exec_config(self) -> dict[str, Any]:
        config = self.params.get("exec")
        return config if isinstance(config, dict) else {}

    @property
    def command(self) -> str:
        return str(self.exec_config.get("command") or "")

    def identity(self) -> tuple[Any, ...]:
        config = self.exec_config
        return (
            self.tag,
            config.get("apiVersion"),
            config.get("command"),
            freeze(config.get("args") or []),
            freeze(config.get("env") or []),
        )

    def inspect_expiry(
        self,
        now: datetime,
        margin: timedelta,
        probe: StatusProbe | None = None,
        probe_timeout: float = 10.0,
    ) -> ExpiryStatus:
        if probe is None:
            return ExpiryStatus.unknown("no status probe")
        try:
            expiry = probe(copy.deepcopy(self.exec_config), probe_timeout)
        except RefreshActionError as e:
            logger.warning(f"Status probe for {self.command or 'exec plugin'} failed: {e}")
            return ExpiryStatus.unknown("status probe failed")
        if expiry is None:
            return ExpiryStatus.unknown("plugin reported no expiry")
        return ExpiryStatus(classify(expiry, now, margin), expiry, "status probe")

    def default_action(self) -> RefreshAction | None:
        return ExecPluginAction()

    def with_refreshed(self, credential: RefreshedCredential) -> ExecPluginCredential:
        return ExecPluginCredential(copy.deepcopy(self.params))
