"""
Command-line entry point.

Usage:
    storage-account-sync --client-id <client-id>
                         --thumbprint <certificate-thumbprint>
                         --key-vault-url https://my-key-vault.vault.azure.net
                         --secret-name <sas-connection-string-secret>
                         [--azcopy-options "<options>"] [--verbose] [--what-if]
"""

import os
import sys
import logging
import argparse
from typing import List, Optional

from storage_sync.config import REQUIRED_SETTINGS, RunConfig, ToolSettings, get_settings
from storage_sync.errors import ExitCode
from storage_sync.pipeline import StorageAccountSync

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# these log every request at INFO
NOISY_LOGGERS = ("azure", "msal", "urllib3")


class _MaxLevelFilter(logging.Filter):
    def __init__(self, level: int):
        super().__init__()
        self.level = level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.level


def configure_logging(verbose: bool = False) -> None:
    """
    Send progress to stdout and warnings/errors to stderr.

    Args:
        verbose: Include debug (progress) messages
    """
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.addFilter(_MaxLevelFilter(logging.WARNING))
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=[stdout_handler, stderr_handler],
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="storage-account-sync",
        description="Sync every blob container of a storage account to local directories with azcopy, "
                    "using a SAS connection string kept in Key Vault.",
    )
    parser.add_argument("-c", "--client-id", required=True,
                        help="The service principal client id to authenticate to KeyVault")
    parser.add_argument("-t", "--thumbprint", required=True,
                        help="The certificate thumbprint used to authenticate with client-id")
    parser.add_argument("-k", "--key-vault-url", required=True,
                        help="The URL to the KeyVault instance")
    parser.add_argument("-s", "--secret-name", required=True,
                        help="The secret name in KeyVault containing the SAS connection string")
    parser.add_argument("-a", "--azcopy-options", default=None,
                        help="Extra options to pass to azcopy, e.g. --azcopy-options=\"--delete-destination=true\"")
    parser.add_argument("-v", "--verbose", action="store_true", default=False,
                        help="Prints verbose messages to standard output")
    parser.add_argument("-w", "--what-if", action="store_true", default=False,
                        help="Skips running azcopy, but will display the commands it would execute")
    parser.add_argument("--tenant-id", default=None,
                        help="Tenant used when the KeyVault challenge does not name one")
    parser.add_argument("-p", "--prefix", default=None,
                        help="Only sync containers whose name starts with this prefix")
    parser.add_argument("--fail-fast", action="store_true", default=False,
                        help="Stop at the first container azcopy fails to sync")
    return parser


def parse_args(argv: Optional[List[str]] = None) -> RunConfig:
    return RunConfig.from_namespace(build_parser().parse_args(argv))


def process_status(exit_code: int) -> int:
    """
    Exit status to hand to sys.exit.

    POSIX keeps only the low byte of a status, so a nonzero code whose low
    byte is zero (AZCOPY_LAUNCH_FAILED) would read as success. Those become 255.
    """
    if os.name != "nt" and exit_code != 0 and exit_code & 0xFF == 0:
        return 255
    return exit_code


def check_settings(settings: ToolSettings) -> bool:
    """Log the settings in use and report any required one that is empty."""
    logger.debug(f"Settings: {settings.to_dict()}")
    if settings.validate():
        return True

    empty = [name for name in REQUIRED_SETTINGS if not getattr(settings, name)]
    logger.error(f"Required settings are empty: {', '.join(empty)}. Check the environment and .env file")
    return False


def main(argv: Optional[List[str]] = None) -> int:
    """
    Parse arguments and run the sync.

    Returns:
        Process exit status
    """
    config = parse_args(argv)
    configure_logging(config.verbose)

    settings = get_settings()
    if not check_settings(settings):
        return process_status(ExitCode.UNEXPECTED_ERROR)

    return process_status(StorageAccountSync(config, settings=settings).run())


if __name__ == "__main__":
    sys.exit(main())
