"""
In-memory kubeconfig model.

This module defines the dataclasses representing a kubeconfig document:
clusters, users, contexts and the current-context selection.

Schema Design Decisions:
    - Entities are keyed by name in insertion-ordered dicts, so names are
      unique by construction and output order matches input order
    - Fields the model does not interpret are kept in ``extras`` bags and
      written back unchanged
    - Key order of every entry is captured at load time and reused when
      writing, so untouched entries serialize identically
    - Users hold a credential kind (see kontext.credentials) instead of a
      raw mapping, so staleness and refresh dispatch on the kind
    - Clusters and users that are already unreferenced when the file is
      loaded are recorded as retained; only entries orphaned by a mutation
      are garbage-collected

Invariants (checked by KubeConfig.validate before every write):
    - every context's cluster and user exist
    - no cluster or user is orphaned unless retained
    - current_context, if set, names an existing context
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from kontext.credentials import CredentialKind, CredentialKindRegistry
from kontext.credentials.base import freeze
from kontext.errors import (
    ConfigParseError,
    ContextNotFoundError,
    InvariantViolationError,
)

logger = logging.getLogger(__name__)

# Canonical key order for new documents and entries (the order kubectl writes)
TOP_LEVEL_ORDER = [
    "apiVersion",
    "clusters",
    "contexts",
    "current-context",
    "kind",
    "preferences",
    "users",
]
CLUSTER_ORDER = ["certificate-authority-data", "server"]
CONTEXT_ORDER = ["cluster", "namespace", "user"]

IMPERSONATION_FIELDS = ("as", "as-uid", "as-groups", "as-user-extra")


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _ordered(values: dict[str, Any], order: Iterable[str]) -> dict[str, Any]:
    """Arrange keys by a captured order, appending keys not in it."""
    result = {key: values[key] for key in order if key in values}
    result.update((key, value) for key, value in values.items() if key not in result)
    return result


def _split_entry(
    entry: Any, body_key: str, section: str
) -> tuple[str, dict[str, Any], dict[str, Any], list[str]]:
    """
    Split a named list entry into (name, body, entry extras, entry key order).

    Raises:
        ConfigParseError: If the entry is not a mapping with a string name
            and a mapping body.
    """
    if not isinstance(entry, dict):
        raise ConfigParseError(None, f"{section} entries must be mappings")
    name = entry.get("name")
    if not isinstance(name, str) or not name:
        raise ConfigParseError(None, f"{section} entry without a name")
    body = entry.get(body_key)
    if body is None:
        body = {}
    if not isinstance(body, dict):
        raise ConfigParseError(None, f"{section} '{name}': '{body_key}' must be a mapping")
    extras = {k: v for k, v in entry.items() if k not in ("name", body_key)}
    return name, dict(body), extras, list(entry.keys())


def _named_entry(
    name: str,
    body_key: str,
    body: dict[str, Any],
    entry_extras: dict[str, Any],
    entry_order: list[str],
) -> dict[str, Any]:
    entry = {body_key: body, "name": name, **entry_extras}
    return _ordered(entry, entry_order)


# -----------------------------------------------------------------------------
# Entities
# -----------------------------------------------------------------------------


@dataclass
class Cluster:
    """
    A named remote endpoint and its trust material.

    Attributes:
        name: Unique cluster name.
        server: API server URL.
        certificate_authority_data: Base64 PEM bundle, if embedded.
        extras: Every other field of the ``cluster`` mapping, verbatim.
        entry_extras: Fields of the list entry besides name and cluster.
    """

    name: str
    server: str | None = None
    certificate_authority_data: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)
    entry_extras: dict[str, Any] = field(default_factory=dict)
    key_order: list[str] = field(default_factory=lambda: list(CLUSTER_ORDER), repr=False)
    entry_order: list[str] = field(default_factory=list, repr=False)

    def identity(self) -> tuple[Any, ...]:
        """Comparison key for deduplication: the server endpoint."""
        return (self.server,)

    @classmethod
    def from_entry(cls, entry: Any) -> Cluster:
        name, body, entry_extras, entry_order = _split_entry(entry, "cluster", "clusters")
        server = body.pop("server", None)
        ca_data = body.pop("certificate-authority-data", None)
        return cls(
            name=name,
            server=None if server is None else str(server),
            certificate_authority_data=None if ca_data is None else str(ca_data),
            extras=body,
            entry_extras=entry_extras,
            key_order=list(entry.get("cluster") or {}),
            entry_order=entry_order,
        )

    def to_entry(self) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if self.server is not None:
            body["server"] = self.server
        if self.certificate_authority_data is not None:
            body["certificate-authority-data"] = self.certificate_authority_data
        body.update(self.extras)
        return _named_entry(
            self.name,
            "cluster",
            _ordered(body, self.key_order),
            self.entry_extras,
            self.entry_order,
        )


@dataclass
class User:
    """
    A named credential holder.

    Attributes:
        name: Unique user name.
        auth: The credential, as a credential kind variant.
        impersonation: ``as``/``as-uid``/``as-groups``/``as-user-extra`` fields.
        extras: Every other field of the ``user`` mapping, verbatim.
        entry_extras: Fields of the list entry besides name and user.
    """

    name: str
    auth: CredentialKind
    impersonation: dict[str, Any] = field(default_factory=dict)
    extras: dict[str, Any] = field(default_factory=dict)
    entry_extras: dict[str, Any] = field(default_factory=dict)
    key_order: list[str] = field(default_factory=list, repr=False)
    entry_order: list[str] = field(default_factory=list, repr=False)

    def identity(self) -> tuple[Any, ...]:
        """
        Comparison key for deduplication.

        Covers the credential kind and its parameters, impersonation, and
        any credential fields of other kinds that share the entry. Unknown
        fields are not part of it.
        """
        secondary = {
            k: v
            for k, v in self.extras.items()
            if k in CredentialKindRegistry.known_fields()
        }
        return (self.auth.identity(), freeze(self.impersonation), freeze(secondary))

    @classmethod
    def from_entry(cls, entry: Any) -> User:
        name, body, entry_extras, entry_order = _split_entry(entry, "user", "users")
        auth, leftover = CredentialKindRegistry.from_fields(body)
        impersonation = {k: v for k, v in leftover.items() if k in IMPERSONATION_FIELDS}
        extras = {k: v for k, v in leftover.items() if k not in IMPERSONATION_FIELDS}
        return cls(
            name=name,
            auth=auth,
            impersonation=impersonation,
            extras=extras,
            entry_extras=entry_extras,
            key_order=list(body),
            entry_order=entry_order,
        )

    def to_entry(self) -> dict[str, Any]:
        body: dict[str, Any] = {}
        body.update(self.auth.to_fields())
        body.update(self.impersonation)
        body.update(self.extras)
        return _named_entry(
            self.name,
            "user",
            _ordered(body, self.key_order),
            self.entry_extras,
            self.entry_order,
        )


@dataclass
class Context:
    """A named binding of one cluster to one user, plus optional namespace."""

    name: str
    cluster: str
    user: str
    namespace: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)
    entry_extras: dict[str, Any] = field(default_factory=dict)
    key_order: list[str] = field(default_factory=lambda: list(CONTEXT_ORDER), repr=False)
    entry_order: list[str] = field(default_factory=list, repr=False)

    @classmethod
    def from_entry(cls, entry: Any) -> Context:
        name, body, entry_extras, entry_order = _split_entry(entry, "context", "contexts")
        key_order = list(body)
        cluster = body.pop("cluster", None)
        user = body.pop("user", None)
        if not isinstance(cluster, str) or not cluster:
            raise ConfigParseError(None, f"context '{name}' has no cluster")
        if not isinstance(user, str) or not user:
            raise ConfigParseError(None, f"context '{name}' has no user")
        namespace = body.pop("namespace", None)
        return cls(
            name=name,
            cluster=cluster,
            user=user,
            namespace=None if namespace is None else str(namespace),
            extras=body,
            entry_extras=entry_extras,
            key_order=key_order,
            entry_order=entry_order,
        )

    def to_entry(self) -> dict[str, Any]:
        body: dict[str, Any] = {"cluster": self.cluster, "user": self.user}
        if self.namespace is not None:
            body["namespace"] = self.namespace
        body.update(self.extras)
        return _named_entry(
            self.name,
            "context",
            _ordered(body, self.key_order),
            self.entry_extras,
            self.entry_order,
        )


@dataclass
class RemovalResult:
    """Entries removed by a mutation."""

    contexts: list[str] = field(default_factory=list)
    clusters: list[str] = field(default_factory=list)
    users: list[str] = field(default_factory=list)
    cleared_current: bool = False


# -----------------------------------------------------------------------------
# Document
# -----------------------------------------------------------------------------


@dataclass
class KubeConfig:
    """
    A complete kubeconfig document.

    Attributes:
        clusters: Cluster name -> Cluster, in document order.
        users: User name -> User, in document order.
        contexts: Context name -> Context, in document order.
        current_context: Selected context name, or None.
        extras: Other top-level fields (apiVersion, kind, preferences, ...).
        retained_clusters: Cluster names allowed to stay unreferenced.
        retained_users: User names allowed to stay unreferenced.
        source: The document as loaded, used to detect no-op saves.
    """

    clusters: dict[str, Cluster] = field(default_factory=dict)
    users: dict[str, User] = field(default_factory=dict)
    contexts: dict[str, Context] = field(default_factory=dict)
    current_context: str | None = None
    extras: dict[str, Any] = field(
        default_factory=lambda: {"apiVersion": "v1", "kind": "Config", "preferences": {}}
    )
    key_order: list[str] = field(default_factory=lambda: list(TOP_LEVEL_ORDER), repr=False)
    retained_clusters: set[str] = field(default_factory=set, repr=False)
    retained_users: set[str] = field(default_factory=set, repr=False)
    source: dict[str, Any] | None = field(default=None, compare=False, repr=False)

    # -------------------------------------------------------------------------
    # Decoding and encoding
    # -------------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Any) -> KubeConfig:
        """
        Decode a parsed kubeconfig document.

        Raises:
            ConfigParseError: If the document does not fit the schema, has
                duplicate names, or references missing entries. A
                current-context naming no context is cleared, not rejected.
        """
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigParseError(None, "document root must be a mapping")

        clusters = cls._decode_section(data, "clusters", Cluster.from_entry)
        users = cls._decode_section(data, "users", User.from_entry)
        contexts = cls._decode_section(data, "contexts", Context.from_entry)

        current = data.get("current-context")
        if current is not None and not isinstance(current, str):
            raise ConfigParseError(None, "current-context must be a string")

        core = ("clusters", "users", "contexts", "current-context")
        model = cls(
            clusters=clusters,
            users=users,
            contexts=contexts,
            current_context=current or None,
            extras={k: v for k, v in data.items() if k not in core},
            key_order=list(data.keys()),
        )

        for context in contexts.values():
            if context.cluster not in clusters:
                raise ConfigParseError(
                    None,
                    f"context '{context.name}' references unknown cluster '{context.cluster}'",
                )
            if context.user not in users:
                raise ConfigParseError(
                    None,
                    f"context '{context.name}' references unknown user '{context.user}'",
                )
        # kubectl leaves this behind after deleting the active context
        if model.current_context is not None and model.current_context not in contexts:
            logger.warning(
                f"current-context '{model.current_context}' does not exist; "
                f"treating it as unset"
            )
            model.current_context = None

        model.retained_clusters = set(model.orphaned_clusters())
        model.retained_users = set(model.orphaned_users())
        if model.retained_clusters or model.retained_users:
            logger.debug(
                f"Retaining unreferenced clusters {sorted(model.retained_clusters)} "
                f"and users {sorted(model.retained_users)}"
            )
        return model

    @staticmethod
    def _decode_section(data: dict[str, Any], section: str, decode: Any) -> dict[str, Any]:
        entries = data.get(section)
        if entries is None:
            return {}
        if not isinstance(entries, list):
            raise ConfigParseError(None, f"'{section}' must be a list")
        decoded: dict[str, Any] = {}
        for entry in entries:
            item = decode(entry)
            if item.name in decoded:
                raise ConfigParseError(None, f"duplicate name '{item.name}' in {section}")
            decoded[item.name] = item
        return decoded

    def to_dict(self) -> dict[str, Any]:
        """Encode the model as a kubeconfig document."""
        document: dict[str, Any] = dict(self.extras)
        for section, entities in (
            ("clusters", self.clusters),
            ("users", self.users),
            ("contexts", self.contexts),
        ):
            if entities or section in self.key_order:
                document[section] = [entity.to_entry() for entity in entities.values()]
        if self.current_context is not None or "current-context" in self.key_order:
            document["current-context"] = self.current_context or ""
        return _ordered(document, self.key_order)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_context(self, name: str) -> Context:
        """
        Raises:
            ContextNotFoundError: If the context does not exist.
        """
        context = self.contexts.get(name)
        if context is None:
            raise ContextNotFoundError(name)
        return context

    def user_for(self, context_name: str) -> User:
        return self.users[self.get_context(context_name).user]

    def cluster_for(self, context_name: str) -> Cluster:
        return self.clusters[self.get_context(context_name).cluster]

    def referenced_clusters(self) -> set[str]:
        return {context.cluster for context in self.contexts.values()}

    def referenced_users(self) -> set[str]:
        return {context.user for context in self.contexts.values()}

    def orphaned_clusters(self) -> list[str]:
        referenced = self.referenced_clusters()
        return [name for name in self.clusters if name not in referenced]

    def orphaned_users(self) -> list[str]:
        referenced = self.referenced_users()
        return [name for name in self.users if name not in referenced]

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def select(self, name: str) -> None:
        """
        Set the current context.

        Raises:
            ContextNotFoundError: If the context does not exist.
        """
        self.get_context(name)
        self.current_context = name

    def delete_contexts(self, names: Iterable[str]) -> list[str]:
        """
        Delete contexts without touching current_context or orphans.

        All names are checked before anything is deleted.

        Raises:
            ContextNotFoundError: Listing every missing name.
        """
        names = list(dict.fromkeys(names))
        missing = [name for name in names if name not in self.contexts]
        if missing:
            raise ContextNotFoundError(missing)
        for name in names:
            del self.contexts[name]
        return names

    def collect_garbage(
        self,
        clusters: Iterable[str] | None = None,
        users: Iterable[str] | None = None,
    ) -> tuple[list[str], list[str]]:
        """
        Delete unreferenced clusters and users.

        Args:
            clusters: Candidate cluster names. None means every orphan that
                is not retained.
            users: Candidate user names, same convention.

        Returns:
            Tuple of (removed cluster names, removed user names).
        """
        referenced_clusters = self.referenced_clusters()
        referenced_users = self.referenced_users()

        if clusters is None:
            clusters = [c for c in self.clusters if c not in self.retained_clusters]
        if users is None:
            users = [u for u in self.users if u not in self.retained_users]

        removed_clusters = [
            name
            for name in dict.fromkeys(clusters)
            if name in self.clusters and name not in referenced_clusters
        ]
        removed_users = [
            name
            for name in dict.fromkeys(users)
            if name in self.users and name not in referenced_users
        ]
        for name in removed_clusters:
            del self.clusters[name]
            self.retained_clusters.discard(name)
        for name in removed_users:
            del self.users[name]
            self.retained_users.discard(name)

        if removed_clusters or removed_users:
            logger.debug(
                f"Garbage-collected clusters {removed_clusters} and users {removed_users}"
            )
        return removed_clusters, removed_users

    def remove_contexts(self, names: Iterable[str]) -> RemovalResult:
        """
        Remove contexts and the clusters/users only they referenced.

        If the current context is removed it is cleared, not repointed.

        Raises:
            ContextNotFoundError: If any name is missing; nothing is removed.
        """
        names = list(dict.fromkeys(names))
        targets = [self.get_context(n) for n in names if n in self.contexts]
        candidate_clusters = [context.cluster for context in targets]
        candidate_users = [context.user for context in targets]

        removed = self.delete_contexts(names)
        result = RemovalResult(contexts=removed)
        if self.current_context in removed:
            self.current_context = None
            result.cleared_current = True

        result.clusters, result.users = self.collect_garbage(
            candidate_clusters, candidate_users
        )
        return result

    # -------------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------------

    def validate(self) -> None:
        """
        Check every structural invariant.

        Raises:
            InvariantViolationError: Describing the first broken invariant.
        """
        for section, entities in (
            ("cluster", self.clusters),
            ("user", self.users),
            ("context", self.contexts),
        ):
            for key, entity in entities.items():
                if entity.name != key:
                    raise InvariantViolationError(
                        f"{section} stored as '{key}' is named '{entity.name}'"
                    )

        for context in self.contexts.values():
            if context.cluster not in self.clusters:
                raise InvariantViolationError(
                    f"context '{context.name}' references missing cluster '{context.cluster}'"
                )
            if context.user not in self.users:
                raise InvariantViolationError(
                    f"context '{context.name}' references missing user '{context.user}'"
                )

        orphaned_clusters = set(self.orphaned_clusters()) - self.retained_clusters
        if orphaned_clusters:
            raise InvariantViolationError(
                f"unreferenced clusters left behind: {sorted(orphaned_clusters)}"
            )
        orphaned_users = set(self.orphaned_users()) - self.retained_users
        if orphaned_users:
            raise InvariantViolationError(
                f"unreferenced users left behind: {sorted(orphaned_users)}"
            )

        if self.current_context is not None and self.current_context not in self.contexts:
            raise InvariantViolationError(
                f"current-context '{self.current_context}' does not exist"
            )
