from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from fakes import NOW, THUMBPRINT, make_certificate
from storage_sync.certificates import (
    DirectoryCertificateStore,
    InMemoryCertificateStore,
    default_certificate_selector,
    default_store_path,
    find_certificate,
    normalize_thumbprint,
)


def _self_signed(days: int = 30):
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "storage-sync-test")])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=days))
        .sign(key, hashes.SHA256())
    )
    return key, certificate


def _pem_key(key) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _thumbprint(certificate) -> str:
    return certificate.fingerprint(hashes.SHA1()).hex().upper()


def test_find_certificate_returns_none_when_nothing_matches():
    store = InMemoryCertificateStore([make_certificate(thumbprint="AA" * 20)])

    assert find_certificate(THUMBPRINT, store, now=NOW) is None


def test_find_certificate_on_empty_store_returns_none():
    assert find_certificate(THUMBPRINT, InMemoryCertificateStore(), now=NOW) is None


def test_find_certificate_ignores_thumbprint_formatting():
    store = InMemoryCertificateStore([make_certificate()])
    pasted = "\u200e" + " ".join(THUMBPRINT[i:i + 2] for i in range(0, 40, 2)).lower()

    found = find_certificate(pasted, store, now=NOW)

    assert found is not None
    assert found.thumbprint == THUMBPRINT


def test_find_certificate_prefers_latest_expiry_with_private_key():
    no_key_latest = make_certificate(expires_in_days=900, has_private_key=False, subject="CN=a")
    keyed_short = make_certificate(expires_in_days=100, subject="CN=b")
    keyed_long = make_certificate(expires_in_days=500, subject="CN=c")
    store = InMemoryCertificateStore([no_key_latest, keyed_short, keyed_long])

    found = find_certificate(THUMBPRINT, store, now=NOW)

    assert found.subject == "CN=c"
    assert found.has_private_key


def test_selector_falls_back_to_latest_expiry_without_private_keys(caplog):
    older = make_certificate(expires_in_days=10, has_private_key=False, subject="CN=old")
    newer = make_certificate(expires_in_days=20, has_private_key=False, subject="CN=new")

    chosen = default_certificate_selector([older, newer])

    assert chosen.subject == "CN=new"
    assert "private key" in caplog.text


def test_valid_only_filters_expired_certificates():
    expired = make_certificate(expires_in_days=-1)
    store = InMemoryCertificateStore([expired])

    assert find_certificate(THUMBPRINT, store, valid_only=True, now=NOW) is None
    assert find_certificate(THUMBPRINT, store, valid_only=False, now=NOW) is expired


def test_custom_selector_is_used():
    first = make_certificate(subject="CN=first")
    second = make_certificate(subject="CN=second")
    store = InMemoryCertificateStore([first, second])

    found = find_certificate(THUMBPRINT, store, selector=lambda matches: matches[-1], now=NOW)

    assert found is second


def test_normalize_thumbprint():
    assert normalize_thumbprint("ab:cd ef-01") == "ABCDEF01"
    assert normalize_thumbprint(None) == ""


def test_default_store_path_for_current_user():
    path = default_store_path("My", "CurrentUser")

    assert path == Path.home() / ".dotnet" / "corefx" / "cryptography" / "x509stores" / "my"


def test_default_store_path_requires_override_for_local_machine():
    with pytest.raises(ValueError):
        default_store_path("My", "LocalMachine")


def test_directory_store_reads_pem_with_key(tmp_path):
    key, certificate = _self_signed()
    (tmp_path / "client.pem").write_bytes(
        certificate.public_bytes(serialization.Encoding.PEM) + _pem_key(key)
    )

    found = find_certificate(_thumbprint(certificate), DirectoryCertificateStore(tmp_path))

    assert found is not None
    assert found.has_private_key
    assert b"PRIVATE KEY" in found.certificate_data
    assert b"BEGIN CERTIFICATE" in found.certificate_data


def test_directory_store_reads_sibling_key_file(tmp_path):
    key, certificate = _self_signed()
    (tmp_path / "client.crt").write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    (tmp_path / "client.key").write_bytes(_pem_key(key))

    [stored] = list(DirectoryCertificateStore(tmp_path).certificates())

    assert stored.thumbprint == _thumbprint(certificate)
    assert stored.has_private_key


def test_directory_store_reads_pkcs12(tmp_path):
    key, certificate = _self_signed()
    (tmp_path / "client.pfx").write_bytes(
        pkcs12.serialize_key_and_certificates(
            b"client", key, certificate, None, serialization.NoEncryption()
        )
    )

    [stored] = list(DirectoryCertificateStore(tmp_path).certificates())

    assert stored.thumbprint == _thumbprint(certificate)
    assert stored.has_private_key


def test_directory_store_skips_unreadable_files(tmp_path, caplog):
    (tmp_path / "broken.pem").write_text("not a certificate")
    (tmp_path / "notes.txt").write_text("ignored")

    assert list(DirectoryCertificateStore(tmp_path).certificates()) == []
    assert "broken.pem" in caplog.text


def test_directory_store_missing_directory_is_empty(tmp_path):
    store = DirectoryCertificateStore(tmp_path / "missing")

    assert find_certificate(THUMBPRINT, store) is None
