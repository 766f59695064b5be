"""
Storage account utilities: connection string parsing, container listing and
SAS-scoped container URLs.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional
from urllib.parse import urlsplit, urlunsplit

from azure.core.exceptions import AzureError
from azure.storage.blob import BlobServiceClient

from storage_sync.errors import InvalidConnectionStringError, MissingSasTokenError

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT_SUFFIX = "core.windows.net"
DEVELOPMENT_BLOB_ENDPOINT = "http://127.0.0.1:10000/devstoreaccount1"

KNOWN_SETTINGS = {
    "defaultendpointsprotocol",
    "accountname",
    "accountkey",
    "sharedaccesssignature",
    "blobendpoint",
    "queueendpoint",
    "tableendpoint",
    "fileendpoint",
    "blobsecondaryendpoint",
    "queuesecondaryendpoint",
    "tablesecondaryendpoint",
    "filesecondaryendpoint",
    "endpointsuffix",
    "usedevelopmentstorage",
    "developmentstorageproxyuri",
}

_SIGNATURE = re.compile(r"(?i)(?<![a-z])(sig=)[^&\s\"']*")


@dataclass(frozen=True)
class StorageAccountInfo:
    """Storage account endpoint and SAS credential parsed from a connection string"""
    blob_endpoint: str
    sas_token: str = field(default="", repr=False)
    account_name: Optional[str] = None
    settings: Dict[str, str] = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class SyncJob:
    """A container and the SAS-scoped URL azcopy reads it from"""
    container: str
    source_url: str = field(repr=False)


def _is_absolute_url(value: str) -> bool:
    parsed = urlsplit(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def parse_connection_string(connection_string: str) -> StorageAccountInfo:
    """
    Parse a storage account connection string.

    Args:
        connection_string: e.g. "BlobEndpoint=https://acct.blob.core.windows.net/;SharedAccessSignature=sv=..."

    Returns:
        StorageAccountInfo with the blob endpoint and SAS token (which may be empty)

    Raises:
        InvalidConnectionStringError: If the value is not a usable connection string
    """
    if not connection_string or not connection_string.strip():
        raise InvalidConnectionStringError("connection string is empty")

    settings: Dict[str, str] = {}
    for segment in connection_string.strip().split(";"):
        segment = segment.strip()
        if not segment:
            continue
        key, sep, value = segment.partition("=")
        key = key.strip().lower()
        if not sep or not key:
            raise InvalidConnectionStringError(f"malformed connection string segment: '{key}'")
        if key not in KNOWN_SETTINGS:
            raise InvalidConnectionStringError(f"unknown connection string setting: '{key}'")
        settings[key] = value.strip()

    sas_token = settings.get("sharedaccesssignature", "").lstrip("?")
    if sas_token and settings.get("accountkey"):
        raise InvalidConnectionStringError("connection string has both AccountKey and SharedAccessSignature")

    account_name = settings.get("accountname") or None

    if settings.get("blobendpoint"):
        blob_endpoint = settings["blobendpoint"]
        if not _is_absolute_url(blob_endpoint):
            raise InvalidConnectionStringError(f"BlobEndpoint is not a valid url: {blob_endpoint}")
    elif settings.get("usedevelopmentstorage", "").lower() == "true":
        blob_endpoint = DEVELOPMENT_BLOB_ENDPOINT
    elif account_name:
        protocol = settings.get("defaultendpointsprotocol", "https").lower()
        suffix = settings.get("endpointsuffix") or DEFAULT_ENDPOINT_SUFFIX
        blob_endpoint = f"{protocol}://{account_name}.blob.{suffix}"
    else:
        raise InvalidConnectionStringError("connection string has no blob endpoint")

    return StorageAccountInfo(
        blob_endpoint=blob_endpoint,
        sas_token=sas_token,
        account_name=account_name,
        settings=settings,
    )


def require_sas_token(account: StorageAccountInfo) -> str:
    """Return the account's SAS token, raising MissingSasTokenError when it has none."""
    if not account.sas_token:
        raise MissingSasTokenError("connection string does not contain a SAS token")
    return account.sas_token


def create_blob_service_client(account: StorageAccountInfo) -> BlobServiceClient:
    """Build a BlobServiceClient authenticated with the account's SAS token"""
    return BlobServiceClient(
        account_url=account.blob_endpoint,
        credential=account.sas_token or None
    )


def list_containers(service_client: BlobServiceClient, prefix: Optional[str] = None) -> List[str]:
    """
    List every container name in the account, following continuation tokens.

    One request is made per page; listing stops when the service returns no
    continuation token.

    Args:
        service_client: Blob service client
        prefix: Only return containers whose name starts with this prefix

    Returns:
        Container names in service order
    """
    containers: List[str] = []
    continuation_token = None
    page_count = 0

    try:
        while True:
            pages = service_client.list_containers(name_starts_with=prefix).by_page(
                continuation_token=continuation_token
            )
            page = next(pages, [])
            containers.extend(container.name for container in page)
            page_count += 1

            continuation_token = pages.continuation_token
            if not continuation_token:
                break
    except AzureError as e:
        logger.error(f"Error listing containers: {e}")
        raise

    logger.debug(f"Listed {len(containers)} containers in {page_count} page(s)")
    return containers


def build_source_url(account: StorageAccountInfo, container: str) -> str:
    """
    Build the SAS-scoped URL of a container.

    The container name is appended to the blob endpoint's path and the SAS
    query string is attached unchanged.
    """
    parts = urlsplit(account.blob_endpoint)
    path = f"{parts.path.rstrip('/')}/{container}"
    return urlunsplit((parts.scheme, parts.netloc, path, account.sas_token.lstrip("?"), ""))


def iter_sync_jobs(account: StorageAccountInfo, containers: Iterable[str]) -> Iterator[SyncJob]:
    """Yield a SyncJob per container"""
    for container in containers:
        yield SyncJob(container=container, source_url=build_source_url(account, container))


def redact_sas(text: str) -> str:
    """Hide SAS signatures in text destined for logs or the console."""
    return _SIGNATURE.sub(r"\1REDACTED", text)
