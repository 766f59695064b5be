"""
Storage account sync pipeline.

Certificate lookup -> Key Vault secret -> container listing -> azcopy per container.
Every external collaborator can be injected so the pipeline runs against fakes in tests.
"""

import logging
from typing import Callable, List, Optional

from azure.core.exceptions import AzureError

from storage_sync.auth import ServicePrincipalCertificateCredential
from storage_sync.azcopy import AzCopySynchronizer, ProcessRunner, SyncSummary, run_process
from storage_sync.certificates import (
    CertificateProvider,
    DirectoryCertificateStore,
    StoredCertificate,
    find_certificate,
)
from storage_sync.config import RunConfig, ToolSettings, get_settings
from storage_sync.errors import (
    CertificateNotFoundError,
    ExitCode,
    InvalidConnectionStringError,
    MissingSasTokenError,
    StorageSyncError,
)
from storage_sync.storage import (
    StorageAccountInfo,
    create_blob_service_client,
    iter_sync_jobs,
    list_containers,
    parse_connection_string,
    redact_sas,
    require_sas_token,
)
from storage_sync.vault import get_secret, normalize_vault_url


class StorageAccountSync:
    """
    Mirrors every container of a storage account whose SAS connection string
    is kept in Key Vault.
    """

    def __init__(
        self,
        config: RunConfig,
        settings: Optional[ToolSettings] = None,
        certificate_store: Optional[CertificateProvider] = None,
        credential_factory: Optional[Callable] = None,
        secret_client_factory: Optional[Callable] = None,
        blob_service_factory: Callable = create_blob_service_client,
        runner: ProcessRunner = run_process,
        logger: Optional[logging.Logger] = None
    ):
        """
        Args:
            config: Options for this run
            settings: Environment settings (defaults to get_settings())
            certificate_store: Where to look up the certificate
            credential_factory: Builds the Key Vault credential from (client_id, certificate)
            secret_client_factory: Builds the Key Vault SecretClient
            blob_service_factory: Builds the BlobServiceClient from a StorageAccountInfo
            runner: Runs one azcopy command and returns its exit code
            logger: Logger for progress and error messages
        """
        self.config = config
        self.settings = settings or get_settings()
        self.certificate_store = certificate_store
        self.credential_factory = credential_factory or self._default_credential
        self.secret_client_factory = secret_client_factory
        self.blob_service_factory = blob_service_factory
        self.logger = logger or logging.getLogger(__name__)

        self.synchronizer = AzCopySynchronizer(
            azcopy_options=config.azcopy_options,
            what_if=config.what_if,
            executable=self.settings.azcopy_path,
            sync_root=self.settings.sync_root,
            fail_fast=config.fail_fast,
            runner=runner,
            logger=self.logger,
        )

    def _default_credential(self, client_id: str, certificate: StoredCertificate):
        return ServicePrincipalCertificateCredential(
            client_id,
            certificate,
            authority_host=self.settings.authority_host,
            tenant_id=self.config.tenant_id or self.settings.tenant_id,
        )

    def load_certificate(self) -> StoredCertificate:
        """Find the configured certificate, raising CertificateNotFoundError when unusable."""
        store = self.certificate_store
        if store is None:
            try:
                store = DirectoryCertificateStore.from_settings(self.settings)
            except ValueError as e:
                raise CertificateNotFoundError(str(e)) from e
        self.logger.debug(f"Loading certificate with thumbprint {self.config.thumbprint}")

        certificate = find_certificate(self.config.thumbprint, store, valid_only=False)
        if certificate is None:
            raise CertificateNotFoundError(
                f"Could not find certificate with thumbprint {self.config.thumbprint} in the certificate store"
            )
        if not certificate.has_private_key:
            raise CertificateNotFoundError(
                f"Certificate with thumbprint {self.config.thumbprint} has no private key"
            )
        return certificate

    def fetch_storage_account(self, vault_url: str, certificate: StoredCertificate) -> StorageAccountInfo:
        """Read the connection string secret and parse it."""
        credential = self.credential_factory(self.config.client_id, certificate)

        kwargs = {}
        if self.secret_client_factory is not None:
            kwargs["client_factory"] = self.secret_client_factory
        secret = get_secret(vault_url, self.config.secret_name, credential, **kwargs)

        # Required SAS settings: service Blob; resource types Service, Container,
        # Object; permissions Read, List
        self.logger.debug("Parsing storage account connection string")
        try:
            account = parse_connection_string(secret)
        except InvalidConnectionStringError as e:
            raise InvalidConnectionStringError(
                f"KeyVault secret '{self.config.secret_name}' is not a valid storage account connection string: {e}"
            ) from e

        try:
            require_sas_token(account)
        except MissingSasTokenError as e:
            raise MissingSasTokenError(
                f"KeyVault secret '{self.config.secret_name}' does not contain a valid SAS token."
            ) from e

        return account

    def list_containers(self, account: StorageAccountInfo) -> List[str]:
        self.logger.debug("Retrieving storage account container names")
        service_client = self.blob_service_factory(account)
        containers = list_containers(service_client, prefix=self.config.container_prefix)
        self.logger.debug(f"Found containers: {', '.join(containers)}")
        return containers

    def sync(self) -> SyncSummary:
        """
        Run the pipeline, raising on any failure before the sync loop.

        Returns:
            Per-container results
        """
        if self.config.what_if:
            self.logger.info("What-If mode enabled, azcopy will not be run")

        vault_url = normalize_vault_url(self.config.key_vault_url)
        certificate = self.load_certificate()
        account = self.fetch_storage_account(vault_url, certificate)
        containers = self.list_containers(account)

        if not containers:
            self.logger.info("Storage account has no containers to sync")

        return self.synchronizer.sync_all(iter_sync_jobs(account, containers))

    def run(self) -> int:
        """
        Run the pipeline and translate the outcome into a process exit code.

        Returns:
            0 on success, a negative ExitCode for tool errors, or the first
            nonzero azcopy exit code
        """
        try:
            summary = self.sync()
        except StorageSyncError as e:
            self.logger.error(redact_sas(str(e)))
            return int(e.exit_code)
        except AzureError as e:
            self.logger.error(f"Azure request failed: {redact_sas(str(e))}")
            return int(ExitCode.REMOTE_SERVICE_ERROR)
        except Exception:
            self.logger.exception("Unexpected error during sync")
            return int(ExitCode.UNEXPECTED_ERROR)

        return summary.exit_code
