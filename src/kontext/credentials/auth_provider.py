"""
Auth-provider credentials (OIDC and cloud tokens).

The token and its expiry are cached inside ``auth-provider.config``:

    oidc    id-token (expiry is the JWT ``exp`` claim), refresh-token
    gcp     access-token, expiry (RFC 3339)
    azure   access-token, expires-on (Unix epoch)

Refreshing replaces those cached values in place and leaves every other
config key, and its position, untouched.
"""

from __future__ import annotations

import copy
from datetime import datetime, timedelta
from typing import Any

from kontext.credentials.actions import CommandRefreshAction, OidcRefreshAction
from kontext.credentials.base import (
    CredentialKind,
    CredentialKindRegistry,
    ExpiryStatus,
    RefreshAction,
    RefreshedCredential,
    StatusProbe,
    classify,
    format_timestamp,
    freeze,
    jwt_expiry,
    parse_timestamp,
)

# Keys that only cache short-lived values
EPHEMERAL_CONFIG_KEYS = ("access-token", "id-token", "expiry", "expires-on")


@CredentialKindRegistry.register
class AuthProviderCredential(CredentialKind):
    """Token obtained from a named auth-provider plugin."""

    tag = "auth-provider"
    fields = ("auth-provider",)
    priority = 20
    supports_refresh = True

    @property
    def provider_name(self) -> str:
        return str(self._provider().get("name") or "")

    @property
    def config(self) -> dict[str, Any]:
        return self._provider().get("config") or {}

    def _provider(self) -> dict[str, Any]:
        provider = self.params.get("auth-provider")
        return provider if isinstance(provider, dict) else {}

    def identity(self) -> tuple[Any, ...]:
        provider = self._provider()
        stable_provider = {k: v for k, v in provider.items() if k != "config"}
        stable_config = {
            k: v for k, v in self.config.items() if k not in EPHEMERAL_CONFIG_KEYS
        }
        return (self.tag, freeze(stable_provider), freeze(stable_config))

    def cached_expiry(self) -> tuple[datetime | None, str]:
        """Return the cached expiry and where it was read from."""
        config = self.config
        if config.get("expiry"):
            return parse_timestamp(config["expiry"]), "expiry"
        if config.get("expires-on"):
            return parse_timestamp(config["expires-on"]), "expires-on"
        for key in ("id-token", "access-token"):
            expiry = jwt_expiry(config.get(key))
            if expiry is not None:
                return expiry, f"{key} exp claim"
        return None, ""

    def inspect_expiry(
        self,
        now: datetime,
        margin: timedelta,
        probe: StatusProbe | None = None,
        probe_timeout: float = 10.0,
    ) -> ExpiryStatus:
        expiry, source = self.cached_expiry()
        if expiry is None:
            return ExpiryStatus.unknown("no cached expiry")
        return ExpiryStatus(classify(expiry, now, margin), expiry, source)

    def default_action(self) -> RefreshAction | None:
        if self.provider_name == "oidc":
            return OidcRefreshAction()
        if self.config.get("cmd-path"):
            return CommandRefreshAction()
        return None

    def with_refreshed(self, credential: RefreshedCredential) -> AuthProviderCredential:
        params = copy.deepcopy(self.params)
        provider = params.setdefault("auth-provider", {})
        config = provider.get("config")
        if not isinstance(config, dict):
            config = provider["config"] = {}

        if self.provider_name == "oidc" or "id-token" in config:
            config["id-token"] = credential.token
            if credential.extra.get("refresh_token"):
                config["refresh-token"] = credential.extra["refresh_token"]
        else:
            config["access-token"] = credential.token

        if credential.expiry is not None:
            if "expires-on" in config:
                config["expires-on"] = str(int(credential.expiry.timestamp()))
            elif (
                self.provider_name != "oidc"
                or "expiry" in config
                or jwt_expiry(credential.token) is None
            ):
                # an id-token without an exp claim needs the expiry cached beside it
                config["expiry"] = format_timestamp(credential.expiry)
        return AuthProviderCredential(params)
