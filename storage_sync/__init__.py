"""
Storage account sync.

Mirrors every blob container of an Azure storage account into local
directories with azcopy. The account's SAS connection string is read from
Key Vault, authenticating as a service principal with a certificate.

Main Components:
- certificates: certificate lookup by thumbprint
- auth: service principal access tokens
- vault: Key Vault secret retrieval
- storage: connection strings, container listing, SAS container URLs
- azcopy: azcopy invocation and per-container results
- pipeline: end-to-end orchestration
- cli: command-line entry point
"""

__version__ = "1.0.0"

from storage_sync.config import get_settings, reload_settings, RunConfig, ToolSettings
from storage_sync.errors import ExitCode, StorageSyncError
from storage_sync.pipeline import StorageAccountSync

__all__ = [
    # Configuration
    "get_settings",
    "reload_settings",
    "RunConfig",
    "ToolSettings",

    # Errors
    "ExitCode",
    "StorageSyncError",

    # Pipeline
    "StorageAccountSync",
]
