"""
Kubeconfig model, persistence and deduplication.

Usage:
    from kontext.kubeconfig import ConfigStore, find_duplicates, merge

    store = ConfigStore()
    model = store.load(path)
    for group in find_duplicates(model):
        merge(model, group.canonical, group.duplicates)
    store.save(path, model)
"""

from kontext.kubeconfig.dedup import (
    DuplicateGroup,
    find_duplicates,
    merge,
    merge_all,
)
from kontext.kubeconfig.models import (
    Cluster,
    Context,
    KubeConfig,
    RemovalResult,
    User,
)
from kontext.kubeconfig.store import (
    DEFAULT_KUBECONFIG,
    ConfigStore,
    render,
    resolve_kubeconfig_path,
)

__all__ = [
    # Model
    "KubeConfig",
    "Cluster",
    "User",
    "Context",
    "RemovalResult",
    # Persistence
    "ConfigStore",
    "render",
    "resolve_kubeconfig_path",
    "DEFAULT_KUBECONFIG",
    # Deduplication
    "DuplicateGroup",
    "find_duplicates",
    "merge",
    "merge_all",
]
