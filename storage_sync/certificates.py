"""
Certificate lookup by thumbprint.

Certificates come from a CertificateProvider so callers (and tests) can swap the
on-disk store for an in-memory one. The production provider reads a directory of
PEM / PKCS#12 files laid out like the .NET X509Store on Linux.
"""

import re
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Protocol

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs12

logger = logging.getLogger(__name__)

PEM_SUFFIXES = (".pem", ".crt", ".cer")
PKCS12_SUFFIXES = (".pfx", ".p12")

_PRIVATE_KEY_BLOCK = re.compile(
    rb"-----BEGIN (?:RSA |EC |ENCRYPTED )?PRIVATE KEY-----.+?-----END (?:RSA |EC |ENCRYPTED )?PRIVATE KEY-----",
    re.DOTALL,
)
# separators and zero-width marks picked up when a thumbprint is copied from a UI
_THUMBPRINT_NOISE = re.compile(r"[\s:\-\u200e\u200f\u202a-\u202e\ufeff]")


@dataclass(frozen=True)
class StoredCertificate:
    """An X.509 certificate from a store, with its private key when one is available"""
    thumbprint: str
    subject: str
    not_before: datetime
    not_after: datetime
    has_private_key: bool
    certificate_data: bytes = field(default=b"", repr=False)
    source: Optional[str] = None

    def is_valid_at(self, moment: datetime) -> bool:
        return self.not_before <= moment <= self.not_after


class CertificateProvider(Protocol):
    """Anything that can enumerate the certificates of a store"""

    def certificates(self) -> Iterable[StoredCertificate]:
        ...


CertificateSelector = Callable[[List[StoredCertificate]], StoredCertificate]


def normalize_thumbprint(value: str) -> str:
    """Strip separators and invisible characters and upper-case a thumbprint."""
    return _THUMBPRINT_NOISE.sub("", value or "").upper()


def default_store_path(store_name: str = "My", store_location: str = "CurrentUser") -> Path:
    """
    Directory backing a named certificate store.

    Args:
        store_name: Store name (e.g. "My")
        store_location: "CurrentUser" or "LocalMachine"

    Returns:
        Path of the store directory
    """
    if store_location.lower() == "currentuser":
        return Path.home() / ".dotnet" / "corefx" / "cryptography" / "x509stores" / store_name.lower()
    raise ValueError(
        f"No default directory for certificate store location '{store_location}'; set CERT_STORE_PATH"
    )


def _to_stored_certificate(
    certificate: x509.Certificate,
    private_key=None,
    source: Optional[str] = None
) -> StoredCertificate:
    data = certificate.public_bytes(serialization.Encoding.PEM)
    if private_key is not None:
        data = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ) + data

    return StoredCertificate(
        thumbprint=certificate.fingerprint(hashes.SHA1()).hex().upper(),
        subject=certificate.subject.rfc4514_string(),
        not_before=certificate.not_valid_before_utc,
        not_after=certificate.not_valid_after_utc,
        has_private_key=private_key is not None,
        certificate_data=data,
        source=source,
    )


class DirectoryCertificateStore:
    """
    Certificate store backed by a directory of certificate files.

    PEM files may carry the private key in the same file or in a sibling
    ``<name>.key`` file. PKCS#12 files are read without a password.
    """

    def __init__(self, path):
        self.path = Path(path)

    @classmethod
    def from_settings(cls, settings) -> "DirectoryCertificateStore":
        if settings.cert_store_path:
            return cls(settings.cert_store_path)
        return cls(default_store_path(settings.cert_store_name, settings.cert_store_location))

    def certificates(self) -> Iterable[StoredCertificate]:
        if not self.path.is_dir():
            logger.warning(f"Certificate store directory does not exist: {self.path}")
            return

        for file_path in sorted(self.path.iterdir()):
            suffix = file_path.suffix.lower()
            try:
                if suffix in PEM_SUFFIXES:
                    yield from self._load_pem(file_path)
                elif suffix in PKCS12_SUFFIXES:
                    yield from self._load_pkcs12(file_path)
            except (ValueError, OSError) as e:
                logger.warning(f"Skipping unreadable certificate file {file_path}: {e}")

    def _load_pem(self, file_path: Path) -> List[StoredCertificate]:
        data = file_path.read_bytes()
        key_file = file_path.with_suffix(".key")
        key_data = data + (key_file.read_bytes() if key_file.is_file() else b"")

        private_key = None
        match = _PRIVATE_KEY_BLOCK.search(key_data)
        if match:
            try:
                private_key = serialization.load_pem_private_key(match.group(0), password=None)
            except (ValueError, TypeError) as e:
                logger.warning(f"Could not load private key for {file_path}: {e}")

        certificates = x509.load_pem_x509_certificates(data)
        # the key belongs to the leaf, which comes first
        stored = [_to_stored_certificate(certificates[0], private_key, str(file_path))]
        stored.extend(_to_stored_certificate(c, None, str(file_path)) for c in certificates[1:])
        return stored

    def _load_pkcs12(self, file_path: Path) -> List[StoredCertificate]:
        private_key, certificate, additional = pkcs12.load_key_and_certificates(
            file_path.read_bytes(), None
        )
        stored = []
        if certificate is not None:
            stored.append(_to_stored_certificate(certificate, private_key, str(file_path)))
        stored.extend(_to_stored_certificate(c, None, str(file_path)) for c in additional or [])
        return stored


class InMemoryCertificateStore:
    """Certificate provider over a fixed list of certificates"""

    def __init__(self, certificates: Iterable[StoredCertificate] = ()):
        self._certificates = list(certificates)

    def certificates(self) -> Iterable[StoredCertificate]:
        return list(self._certificates)


def default_certificate_selector(candidates: List[StoredCertificate]) -> StoredCertificate:
    """
    Pick the best certificate when several match.

    Prefers the latest expiry among certificates that have a private key. When
    none of them has one, falls back to the latest expiry overall.
    """
    with_key = [c for c in candidates if c.has_private_key]
    if with_key:
        return max(with_key, key=lambda c: c.not_after)

    logger.warning("None of the matching certificates has a private key; using the one that expires last")
    return max(candidates, key=lambda c: c.not_after)


def find_certificate(
    thumbprint: str,
    provider: CertificateProvider,
    valid_only: bool = True,
    selector: Optional[CertificateSelector] = None,
    now: Optional[datetime] = None
) -> Optional[StoredCertificate]:
    """
    Find a certificate by thumbprint.

    Args:
        thumbprint: Certificate thumbprint (hex, separators ignored)
        provider: Store to search
        valid_only: Only consider certificates whose validity window contains now
        selector: Tie-break used when several certificates match
        now: Reference time for valid_only (defaults to the current UTC time)

    Returns:
        The selected certificate, or None when nothing matches
    """
    if thumbprint is None:
        raise ValueError("thumbprint is required")

    wanted = normalize_thumbprint(thumbprint)
    moment = now or datetime.now(timezone.utc)
    selector = selector or default_certificate_selector

    matches = [
        c for c in provider.certificates()
        if normalize_thumbprint(c.thumbprint) == wanted and (not valid_only or c.is_valid_at(moment))
    ]

    if not matches:
        logger.debug(f"No certificate matches thumbprint {wanted}")
        return None

    if len(matches) > 1:
        logger.debug(f"{len(matches)} certificates match thumbprint {wanted}")

    return selector(matches)
