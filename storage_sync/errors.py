"""
Exit codes and error types for the storage account sync tool.
"""

from enum import IntEnum
from typing import List, Optional


class ExitCode(IntEnum):
    """Process exit codes returned by the CLI"""
    SUCCESS = 0
    CERTIFICATE_NOT_FOUND = -1
    INVALID_VAULT_URL = -2
    INVALID_CONNECTION_STRING = -3
    MISSING_SAS_TOKEN = -4
    REMOTE_SERVICE_ERROR = -5
    UNEXPECTED_ERROR = -2147483647
    AZCOPY_LAUNCH_FAILED = -2147483648


class StorageSyncError(Exception):
    """Base class for errors that end the run with a known exit code"""

    exit_code: ExitCode = ExitCode.UNEXPECTED_ERROR


class CertificateNotFoundError(StorageSyncError):
    exit_code = ExitCode.CERTIFICATE_NOT_FOUND


class InvalidVaultUrlError(StorageSyncError):
    exit_code = ExitCode.INVALID_VAULT_URL


class InvalidConnectionStringError(StorageSyncError):
    exit_code = ExitCode.INVALID_CONNECTION_STRING


class MissingSasTokenError(StorageSyncError):
    exit_code = ExitCode.MISSING_SAS_TOKEN


class AzCopyLaunchError(StorageSyncError):
    """Raised when the azcopy executable cannot be started at all"""

    exit_code = ExitCode.AZCOPY_LAUNCH_FAILED

    def __init__(self, command: List[str], cause: Optional[OSError] = None):
        self.command = command
        self.cause = cause
        executable = command[0] if command else "azcopy"
        super().__init__(
            f"Could not run {executable}. Is it in the current working directory or in the PATH? ({cause})"
        )
