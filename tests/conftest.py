from __future__ import annotations

import pytest

from fakes import THUMBPRINT, VAULT_URL, make_certificate
from storage_sync.certificates import InMemoryCertificateStore, StoredCertificate
from storage_sync.config import RunConfig, ToolSettings


@pytest.fixture
def certificate() -> StoredCertificate:
    return make_certificate()


@pytest.fixture
def certificate_store(certificate) -> InMemoryCertificateStore:
    return InMemoryCertificateStore([certificate])


@pytest.fixture
def settings(tmp_path) -> ToolSettings:
    return ToolSettings(
        azcopy_path="azcopy",
        authority_host="login.microsoftonline.com",
        tenant_id="tenant-1",
        cert_store_path=str(tmp_path / "certs"),
        cert_store_location="CurrentUser",
        cert_store_name="My",
        sync_root=str(tmp_path),
    )


@pytest.fixture
def run_config() -> RunConfig:
    return RunConfig(
        client_id="client-1",
        thumbprint=THUMBPRINT,
        key_vault_url=VAULT_URL,
        secret_name="storage-sas",
    )
