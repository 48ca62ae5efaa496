"""
kontext - keep a kubeconfig minimal and its credentials fresh.

kontext maintains the contexts, clusters and users of a kubeconfig file.
It refuses to let equivalent cluster/user pairs hide behind differently
named contexts, and refreshes expiring bearer-token credentials for a
selected context without disturbing anything else in the file.

Key Features:
    - Lists, selects and removes contexts, garbage-collecting orphans
    - Detects and merges duplicate contexts deterministically
    - Inspects credential expiry per credential kind
    - Refreshes OIDC, cloud auth-provider and exec plugin credentials
    - Writes atomically: the file is never seen half-written

Design Principles:
    - All-or-nothing: an operation persists every change or none
    - Pass-through: fields kontext does not understand are preserved
    - One attempt: a failed refresh is reported, never retried
"""

__version__ = "0.1.0"

from kontext.config.settings import Settings, load_config
from kontext.registry import Registry

__all__ = [
    "__version__",
    "Registry",
    "Settings",
    "load_config",
]
