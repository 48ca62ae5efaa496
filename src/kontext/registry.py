"""
Context registry.

Registry is the entry point for every kontext operation. Each call loads the
kubeconfig fresh, works on the in-memory model, and either persists all of
its changes or none of them: any error raised before the final save leaves
the file exactly as it was.

Persisting operations: select, refresh, remove, dedupe.
Read-only operations: list_contexts, current, status, find_duplicates.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from kontext.credentials import CredentialRefresher, RefreshResult, Staleness
from kontext.kubeconfig import dedup
from kontext.kubeconfig.models import KubeConfig, RemovalResult
from kontext.kubeconfig.store import ConfigStore, resolve_kubeconfig_path

if TYPE_CHECKING:
    from kontext.config.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContextSummary:
    """One line of ``list`` output."""

    name: str
    cluster: str
    user: str
    namespace: str | None
    current: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "cluster": self.cluster,
            "user": self.user,
            "namespace": self.namespace,
            "current": self.current,
        }


@dataclass(frozen=True)
class CredentialStatus:
    """Staleness of the credential behind a context."""

    context: str
    user: str
    kind: str
    staleness: Staleness
    expiry: datetime | None
    refreshable: bool


class Registry:
    """
    Orchestrates list/select/refresh/remove/dedupe against one kubeconfig.

    Args:
        path: Kubeconfig path.
        refresher: Credential refresher; a default one is built if omitted.
        store: Persistence backend; a ConfigStore if omitted.
    """

    def __init__(
        self,
        path: Path,
        refresher: CredentialRefresher | None = None,
        store: ConfigStore | None = None,
    ) -> None:
        self.path = Path(path)
        self.refresher = refresher or CredentialRefresher()
        self.store = store or ConfigStore()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        kubeconfig: str | Path | None = None,
    ) -> Registry:
        """Build a registry for the kubeconfig and refresh timing in settings."""
        path = resolve_kubeconfig_path(kubeconfig, settings)
        return cls(path, refresher=CredentialRefresher.from_settings(settings))

    def load(self) -> KubeConfig:
        return self.store.load(self.path)

    def _save(self, model: KubeConfig) -> None:
        self.store.save(self.path, model)

    # -------------------------------------------------------------------------
    # Read-only operations
    # -------------------------------------------------------------------------

    def list_contexts(self) -> list[ContextSummary]:
        """Summaries of every context, sorted by name."""
        model = self.load()
        return [self._summary(model, name) for name in sorted(model.contexts)]

    def current(self) -> ContextSummary | None:
        model = self.load()
        if model.current_context is None:
            return None
        return self._summary(model, model.current_context)

    def status(self, name: str) -> CredentialStatus:
        """
        Inspect the credential behind a context.

        Raises:
            ContextNotFoundError: If the context does not exist.
        """
        model = self.load()
        user = model.user_for(name)
        expiry = self.refresher.inspect(user)
        return CredentialStatus(
            context=name,
            user=user.name,
            kind=user.auth.tag,
            staleness=expiry.staleness,
            expiry=expiry.expiry,
            refreshable=user.auth.supports_refresh,
        )

    def find_duplicates(self) -> list[dedup.DuplicateGroup]:
        return dedup.find_duplicates(self.load())

    # -------------------------------------------------------------------------
    # Persisting operations
    # -------------------------------------------------------------------------

    def select(self, name: str) -> None:
        """
        Make a context current.

        Raises:
            ContextNotFoundError: If the context does not exist.
        """
        model = self.load()
        model.select(name)
        self._save(model)
        logger.info(f"Switched to context '{name}'")

    def refresh(self, name: str, force: bool = False) -> RefreshResult:
        """
        Refresh the credential of a context's user and persist it.

        Raises:
            ContextNotFoundError: If the context does not exist.
            AuthProviderUnsupportedError: If the credential cannot be refreshed.
            RefreshFailedError: If the external action fails or times out.
        """
        model = self.load()
        user = model.user_for(name)
        result = self.refresher.refresh(user, force=force)
        if result.refreshed:
            self._save(model)
        return result

    def remove(self, names: Iterable[str]) -> RemovalResult:
        """
        Remove contexts and garbage-collect what only they referenced.

        Raises:
            ContextNotFoundError: If any name is missing; nothing is removed.
        """
        model = self.load()
        result = model.remove_contexts(names)
        self._save(model)
        logger.info(
            f"Removed contexts {result.contexts}, clusters {result.clusters}, "
            f"users {result.users}"
        )
        return result

    def dedupe(self) -> list[dedup.DuplicateGroup]:
        """Merge every group of duplicate contexts and persist."""
        model = self.load()
        groups = dedup.merge_all(model)
        if groups:
            self._save(model)
        return groups

    @staticmethod
    def _summary(model: KubeConfig, name: str) -> ContextSummary:
        context = model.contexts[name]
        return ContextSummary(
            name=name,
            cluster=context.cluster,
            user=context.user,
            namespace=context.namespace,
            current=name == model.current_context,
        )
