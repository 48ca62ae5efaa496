"""
Credential kinds and the refresh engine.

Each kubeconfig user carries one credential kind. Kinds share the
{inspect_expiry, refresh} capability set and register themselves with the
CredentialKindRegistry, which maps a user entry to its kind.

Supported kinds (detection order):
    - exec: client-go exec plugins
    - auth-provider: OIDC and cloud tokens cached in the kubeconfig
    - client-certificate: X.509 client certificates
    - token: static bearer tokens
    - basic: username and password
    - none: no recognized credential
"""

# Import kinds to trigger registration
from kontext.credentials.actions import (
    CommandRefreshAction,
    ExecPluginAction,
    ExecStatusProbe,
    OidcRefreshAction,
)
from kontext.credentials.auth_provider import AuthProviderCredential
from kontext.credentials.base import (
    CredentialKind,
    CredentialKindRegistry,
    ExpiryStatus,
    RefreshAction,
    RefreshedCredential,
    Staleness,
    StatusProbe,
)
from kontext.credentials.certificate import ClientCertificateCredential
from kontext.credentials.exec_plugin import ExecPluginCredential
from kontext.credentials.refresher import CredentialRefresher, RefreshResult
from kontext.credentials.static import (
    BasicAuthCredential,
    NoCredential,
    StaticTokenCredential,
)

__all__ = [
    # Base classes and types
    "CredentialKind",
    "CredentialKindRegistry",
    "ExpiryStatus",
    "RefreshAction",
    "RefreshedCredential",
    "Staleness",
    "StatusProbe",
    # Kinds
    "AuthProviderCredential",
    "BasicAuthCredential",
    "ClientCertificateCredential",
    "ExecPluginCredential",
    "NoCredential",
    "StaticTokenCredential",
    # Actions and probes
    "CommandRefreshAction",
    "ExecPluginAction",
    "ExecStatusProbe",
    "OidcRefreshAction",
    # Engine
    "CredentialRefresher",
    "RefreshResult",
]
