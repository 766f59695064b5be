"""
Key Vault secret retrieval.
"""

import logging
from typing import Callable, Optional
from urllib.parse import urlparse

from azure.core.exceptions import AzureError
from azure.keyvault.secrets import SecretClient

from storage_sync.errors import InvalidVaultUrlError

logger = logging.getLogger(__name__)


def normalize_vault_url(vault_url: str) -> str:
    """
    Validate a Key Vault URL and strip its trailing slash.

    Args:
        vault_url: Vault base URL (e.g. https://my-vault.vault.azure.net/)

    Returns:
        Normalized vault URL

    Raises:
        InvalidVaultUrlError: If the value is not an absolute http(s) URL
    """
    parsed = urlparse((vault_url or "").strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidVaultUrlError(f"key-vault-url is not a valid url: {vault_url}")
    return parsed.geturl().rstrip("/")


def get_secret(
    vault_url: str,
    secret_name: str,
    credential,
    client_factory: Callable[..., SecretClient] = SecretClient,
    version: Optional[str] = None
) -> str:
    """
    Fetch the current value of a secret.

    Args:
        vault_url: Vault base URL
        secret_name: Name of the secret
        credential: TokenCredential used by the client
        client_factory: Builds the SecretClient (swapped out in tests)
        version: Specific secret version (defaults to the latest)

    Returns:
        Secret value
    """
    vault_url = normalize_vault_url(vault_url)
    logger.debug(f"Getting secret {secret_name} from KeyVault {vault_url}")

    try:
        with client_factory(vault_url=vault_url, credential=credential) as client:
            secret = client.get_secret(secret_name, version=version)
    except AzureError as e:
        logger.error(f"Error getting secret '{secret_name}' from {vault_url}: {e}")
        raise

    return secret.value or ""
