from __future__ import annotations

from typing import List

import pytest
from azure.core.credentials import AccessToken
from azure.core.exceptions import ClientAuthenticationError

from fakes import make_certificate
from storage_sync import auth

AUTHORITY = "https://login.microsoftonline.com/tenant-1"
RESOURCE = "https://vault.azure.net"


class FakeIdentityCredential:
    created: List["FakeIdentityCredential"] = []
    error = None

    def __init__(self, tenant_id, client_id, *args, **kwargs):
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.args = args
        self.kwargs = kwargs
        self.scopes = None
        self.closed = False
        FakeIdentityCredential.created.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.closed = True

    def get_token(self, *scopes, **kwargs):
        self.scopes = scopes
        if FakeIdentityCredential.error is not None:
            raise FakeIdentityCredential.error
        return AccessToken(f"token-for-{self.tenant_id}", 4102444800)


@pytest.fixture
def identity(monkeypatch):
    FakeIdentityCredential.created = []
    FakeIdentityCredential.error = None
    monkeypatch.setattr(auth, "CertificateCredential", FakeIdentityCredential)
    monkeypatch.setattr(auth, "ClientSecretCredential", FakeIdentityCredential)
    return FakeIdentityCredential


def test_get_access_token_with_certificate(identity):
    certificate = make_certificate()

    token = auth.get_access_token(AUTHORITY, RESOURCE, "", "client-1", certificate)

    assert token == "token-for-tenant-1"
    [credential] = identity.created
    assert credential.client_id == "client-1"
    assert credential.kwargs["certificate_data"] == certificate.certificate_data
    assert credential.kwargs["authority"] == "login.microsoftonline.com"
    assert credential.scopes == ("https://vault.azure.net/.default",)
    assert credential.closed


def test_get_access_token_with_secret(identity):
    token = auth.get_access_token_with_secret(AUTHORITY, RESOURCE, "", "client-1", "s3cret")

    assert token == "token-for-tenant-1"
    [credential] = identity.created
    assert credential.args == ("s3cret",)


def test_explicit_scope_is_used(identity):
    auth.get_access_token(AUTHORITY, RESOURCE, "https://vault.azure.net/user_impersonation",
                          "client-1", make_certificate())

    assert identity.created[0].scopes == ("https://vault.azure.net/user_impersonation",)


@pytest.mark.parametrize("missing", ["authority", "resource", "scope", "client_id", "certificate"])
def test_missing_argument_fails_before_any_request(identity, missing):
    arguments = {
        "authority": AUTHORITY,
        "resource": RESOURCE,
        "scope": "",
        "client_id": "client-1",
        "certificate": make_certificate(),
    }
    arguments[missing] = None

    with pytest.raises(ValueError, match=missing):
        auth.get_access_token(**arguments)

    assert identity.created == []


def test_missing_client_secret_fails(identity):
    with pytest.raises(ValueError):
        auth.get_access_token_with_secret(AUTHORITY, RESOURCE, "", "client-1", None)
    assert identity.created == []


def test_authentication_errors_propagate(identity):
    identity.error = ClientAuthenticationError("AADSTS700027: bad assertion")

    with pytest.raises(ClientAuthenticationError):
        auth.get_access_token(AUTHORITY, RESOURCE, "", "client-1", make_certificate())


def test_split_authority():
    assert auth.split_authority(AUTHORITY) == ("login.microsoftonline.com", "tenant-1")
    with pytest.raises(ValueError):
        auth.split_authority("https://login.microsoftonline.com/")
    with pytest.raises(ValueError):
        auth.split_authority("not-a-url")


def test_service_principal_credential_uses_challenge_tenant(identity):
    credential = auth.ServicePrincipalCertificateCredential(
        "client-1", make_certificate(), tenant_id="fallback-tenant"
    )

    token = credential.get_token("https://vault.azure.net/.default", tenant_id="challenge-tenant")

    assert token.token == "token-for-challenge-tenant"
    assert identity.created[0].scopes == ("https://vault.azure.net/.default",)


def test_service_principal_credential_falls_back_to_configured_tenant(identity):
    credential = auth.ServicePrincipalCertificateCredential(
        "client-1", make_certificate(), tenant_id="fallback-tenant"
    )

    assert credential.get_token("https://vault.azure.net/.default").token == "token-for-fallback-tenant"


def test_service_principal_credential_without_tenant(identity):
    credential = auth.ServicePrincipalCertificateCredential("client-1", make_certificate())

    with pytest.raises(ValueError, match="tenant"):
        credential.get_token("https://vault.azure.net/.default")
