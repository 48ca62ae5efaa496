"""
Client certificate credentials.

Staleness comes from the certificate's notAfter date when the certificate is
embedded (``client-certificate-data``) or readable from disk
(``client-certificate``). Renewing a certificate needs a signing authority,
so refresh is not supported.
"""

from __future__ import annotations

import base64
import binascii
import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path

from cryptography import x509

from kontext.credentials.base import (
    CredentialKind,
    CredentialKindRegistry,
    ExpiryStatus,
    StatusProbe,
    classify,
)

logger = logging.getLogger(__name__)


def certificate_expiry(pem: bytes) -> datetime:
    """
    Return the notAfter date of a PEM certificate.

    Raises:
        ValueError: If the data is not a PEM certificate.
    """
    certificate = x509.load_pem_x509_certificate(pem)
    return certificate.not_valid_after_utc.astimezone(UTC)


@CredentialKindRegistry.register
class ClientCertificateCredential(CredentialKind):
    """X.509 client certificate and key."""

    tag = "client-certificate"
    fields = (
        "client-certificate",
        "client-certificate-data",
        "client-key",
        "client-key-data",
    )
    priority = 30

    def _load_pem(self) -> bytes | None:
        data = self.params.get("client-certificate-data")
        if data:
            try:
                return base64.b64decode(str(data), validate=True)
            except (binascii.Error, ValueError):
                logger.warning("client-certificate-data is not valid base64")
                return None
        path = self.params.get("client-certificate")
        if path:
            try:
                return Path(str(path)).expanduser().read_bytes()
            except OSError as e:
                logger.warning(f"Cannot read client certificate {path}: {e}")
        return None

    def inspect_expiry(
        self,
        now: datetime,
        margin: timedelta,
        probe: StatusProbe | None = None,
        probe_timeout: float = 10.0,
    ) -> ExpiryStatus:
        pem = self._load_pem()
        if pem is None:
            return ExpiryStatus.unknown("client certificate unavailable")
        try:
            expiry = certificate_expiry(pem)
        except ValueError as e:
            logger.warning(f"Cannot parse client certificate: {e}")
            return ExpiryStatus.unknown("client certificate unparseable")
        return ExpiryStatus(classify(expiry, now, margin), expiry, "certificate notAfter")
