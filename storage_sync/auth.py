"""
Access token helpers for authenticating Azure clients (such as the Key Vault
SecretClient) as a service principal.
"""

import logging
from typing import Optional, Tuple
from urllib.parse import urlparse

from azure.core.credentials import AccessToken
from azure.identity import CertificateCredential, ClientSecretCredential

from storage_sync.certificates import StoredCertificate

logger = logging.getLogger(__name__)


def _require(**arguments) -> None:
    for name, value in arguments.items():
        if value is None:
            raise ValueError(f"{name} is required")


def split_authority(authority: str) -> Tuple[str, str]:
    """
    Split an authority URL into its host and tenant.

    Args:
        authority: Authority URL (e.g. https://login.microsoftonline.com/<tenant-id>)

    Returns:
        Tuple of (authority_host, tenant_id)
    """
    parsed = urlparse(authority)
    tenant_id = parsed.path.strip("/").split("/")[0] if parsed.path else ""

    if not parsed.scheme or not parsed.netloc or not tenant_id:
        raise ValueError(f"authority must look like https://<host>/<tenant>: {authority}")

    return parsed.netloc, tenant_id


def _scope_for(resource: str, scope: str) -> str:
    return scope if scope else f"{resource.rstrip('/')}/.default"


def request_token(
    authority: str,
    resource: str,
    scope: str,
    client_id: str,
    certificate: Optional[StoredCertificate] = None,
    client_secret: Optional[str] = None
) -> AccessToken:
    """
    Acquire an AccessToken with either a certificate or a client secret.

    Exactly one of certificate and client_secret must be given. Authentication
    errors from azure-identity propagate unchanged.
    """
    _require(authority=authority, resource=resource, scope=scope, client_id=client_id)
    if (certificate is None) == (client_secret is None):
        raise ValueError("exactly one of certificate or client_secret is required")

    authority_host, tenant_id = split_authority(authority)
    token_scope = _scope_for(resource, scope)

    if certificate is not None:
        logger.debug(f"Requesting token for {token_scope} with certificate {certificate.thumbprint}")
        credential = CertificateCredential(
            tenant_id,
            client_id,
            certificate_data=certificate.certificate_data,
            authority=authority_host,
        )
    else:
        logger.debug(f"Requesting token for {token_scope} with client secret")
        credential = ClientSecretCredential(
            tenant_id,
            client_id,
            client_secret,
            authority=authority_host,
        )

    with credential:
        return credential.get_token(token_scope)


def get_access_token(
    authority: str,
    resource: str,
    scope: str,
    client_id: str,
    certificate: StoredCertificate
) -> str:
    """
    Get a bearer token using a certificate assertion.

    Args:
        authority: Authority URL including the tenant
        resource: Resource the token is for (e.g. https://vault.azure.net)
        scope: Explicit scope; empty string means "<resource>/.default"
        client_id: Service principal client id
        certificate: Certificate with private key

    Returns:
        Access token string
    """
    _require(authority=authority, resource=resource, scope=scope,
             client_id=client_id, certificate=certificate)
    return request_token(authority, resource, scope, client_id, certificate=certificate).token


def get_access_token_with_secret(
    authority: str,
    resource: str,
    scope: str,
    client_id: str,
    client_secret: str
) -> str:
    """Get a bearer token using a client secret."""
    _require(authority=authority, resource=resource, scope=scope,
             client_id=client_id, client_secret=client_secret)
    return request_token(authority, resource, scope, client_id, client_secret=client_secret).token


class ServicePrincipalCertificateCredential:
    """
    TokenCredential that authenticates a service principal with a certificate.

    The Key Vault client calls get_token with the resource scope and the tenant
    it learned from the vault's authentication challenge; tokens are requested
    for that tenant, falling back to the configured one.
    """

    def __init__(
        self,
        client_id: str,
        certificate: StoredCertificate,
        authority_host: str = "login.microsoftonline.com",
        tenant_id: Optional[str] = None
    ):
        _require(client_id=client_id, certificate=certificate, authority_host=authority_host)
        self.client_id = client_id
        self.certificate = certificate
        self.authority_host = authority_host
        self.tenant_id = tenant_id

    def get_token(self, *scopes: str, claims: Optional[str] = None,
                  tenant_id: Optional[str] = None, **kwargs) -> AccessToken:
        if not scopes:
            raise ValueError("at least one scope is required")

        tenant = tenant_id or self.tenant_id
        if not tenant:
            raise ValueError("no tenant id from the vault challenge; pass --tenant-id or set AZURE_TENANT_ID")

        scope = scopes[0]
        resource = scope[:-len("/.default")] if scope.endswith("/.default") else scope
        host = self.authority_host
        if "://" not in host:
            host = f"https://{host}"
        authority = f"{host.rstrip('/')}/{tenant}"

        return request_token(authority, resource, scope, self.client_id, certificate=self.certificate)

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
