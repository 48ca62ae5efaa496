"""
Duplicate context detection and merging.

Two contexts are duplicates when their clusters have the same server
endpoint and their users hold the same credential (kind and parameters,
ignoring cached short-lived tokens). Entry names and fields kontext does not
interpret play no part.

Canonical choice within a group of duplicates:
    1. the current context, if it is in the group
    2. otherwise the lexicographically smallest name
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from kontext.errors import ContextNotFoundError
from kontext.kubeconfig.models import KubeConfig, RemovalResult

logger = logging.getLogger(__name__)


@dataclass
class DuplicateGroup:
    """A canonical context and the contexts equivalent to it."""

    canonical: str
    duplicates: list[str] = field(default_factory=list)

    @property
    def names(self) -> list[str]:
        return [self.canonical, *self.duplicates]


def context_identity(model: KubeConfig, name: str) -> tuple[Any, ...]:
    """Comparison key of a context: its resolved cluster and user identities."""
    return (model.cluster_for(name).identity(), model.user_for(name).identity())


def choose_canonical(names: Iterable[str], current: str | None) -> str:
    names = list(names)
    if current is not None and current in names:
        return current
    return min(names)


def find_duplicates(model: KubeConfig) -> list[DuplicateGroup]:
    """
    Find groups of contexts referencing equivalent cluster/user pairs.

    Returns:
        One group per set of two or more equivalent contexts, ordered by
        canonical name. Duplicates within a group are sorted by name.
    """
    buckets: dict[tuple[Any, ...], list[str]] = {}
    for name in model.contexts:
        buckets.setdefault(context_identity(model, name), []).append(name)

    groups = []
    for names in buckets.values():
        if len(names) < 2:
            continue
        canonical = choose_canonical(names, model.current_context)
        duplicates = sorted(n for n in names if n != canonical)
        groups.append(DuplicateGroup(canonical, duplicates))

    groups.sort(key=lambda group: group.canonical)
    return groups


def merge(model: KubeConfig, canonical: str, duplicates: Iterable[str]) -> RemovalResult:
    """
    Collapse duplicate contexts into the canonical one.

    Removes the duplicate contexts, garbage-collects clusters and users no
    remaining context references, and repoints current_context to the
    canonical name if it pointed at a removed duplicate.

    Raises:
        ContextNotFoundError: If the canonical or any duplicate is missing.
    """
    duplicates = [name for name in dict.fromkeys(duplicates) if name != canonical]
    missing = [n for n in [canonical, *duplicates] if n not in model.contexts]
    if missing:
        raise ContextNotFoundError(missing)

    kept = model.contexts[canonical]
    for name in duplicates:
        namespace = model.contexts[name].namespace
        if namespace != kept.namespace:
            logger.warning(
                f"Merging context '{name}' into '{canonical}' drops namespace "
                f"'{namespace}' (keeping '{kept.namespace}')"
            )

    candidate_clusters = [model.contexts[n].cluster for n in duplicates]
    candidate_users = [model.contexts[n].user for n in duplicates]

    removed = model.delete_contexts(duplicates)
    if model.current_context in removed:
        logger.info(f"Current context '{model.current_context}' now '{canonical}'")
        model.current_context = canonical

    clusters, users = model.collect_garbage(candidate_clusters, candidate_users)
    logger.info(f"Merged {removed} into '{canonical}'")
    return RemovalResult(contexts=removed, clusters=clusters, users=users)


def merge_all(model: KubeConfig) -> list[DuplicateGroup]:
    """Merge every duplicate group; return the groups that were merged."""
    groups = find_duplicates(model)
    for group in groups:
        merge(model, group.canonical, group.duplicates)
    return groups
