"""
Storage Account Sync Configuration
Environment-backed tool settings and the immutable per-run configuration.
"""

import os
import argparse
from dataclasses import dataclass, field
from typing import Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

DEFAULT_AZCOPY = "azcopy.exe" if os.name == "nt" else "azcopy"

REQUIRED_SETTINGS = ("azcopy_path", "authority_host", "cert_store_name", "sync_root")


@dataclass
class ToolSettings:
    """Settings that rarely change between runs, read from the environment"""
    azcopy_path: str = field(default_factory=lambda: os.getenv("AZCOPY_PATH", DEFAULT_AZCOPY))
    authority_host: str = field(
        default_factory=lambda: os.getenv("AZURE_AUTHORITY_HOST", "login.microsoftonline.com")
    )
    tenant_id: Optional[str] = field(default_factory=lambda: os.getenv("AZURE_TENANT_ID"))
    cert_store_path: Optional[str] = field(default_factory=lambda: os.getenv("CERT_STORE_PATH"))
    cert_store_location: str = field(default_factory=lambda: os.getenv("CERT_STORE_LOCATION", "CurrentUser"))
    cert_store_name: str = field(default_factory=lambda: os.getenv("CERT_STORE_NAME", "My"))
    sync_root: str = field(default_factory=lambda: os.getenv("SYNC_ROOT", "."))

    def validate(self) -> bool:
        """Validate required fields"""
        return all(getattr(self, name) for name in REQUIRED_SETTINGS)

    def to_dict(self) -> dict:
        """Convert settings to dictionary"""
        return {
            "azcopy_path": self.azcopy_path,
            "authority_host": self.authority_host,
            "tenant_id": self.tenant_id,
            "cert_store_path": self.cert_store_path,
            "cert_store_location": self.cert_store_location,
            "cert_store_name": self.cert_store_name,
            "sync_root": self.sync_root,
        }


@dataclass(frozen=True)
class RunConfig:
    """Options for a single sync run, parsed from the command line"""
    client_id: str
    thumbprint: str
    key_vault_url: str
    secret_name: str
    azcopy_options: Optional[str] = None
    verbose: bool = False
    what_if: bool = False
    tenant_id: Optional[str] = None
    container_prefix: Optional[str] = None
    fail_fast: bool = False

    @classmethod
    def from_namespace(cls, args: argparse.Namespace) -> "RunConfig":
        return cls(
            client_id=args.client_id,
            thumbprint=args.thumbprint,
            key_vault_url=args.key_vault_url,
            secret_name=args.secret_name,
            azcopy_options=args.azcopy_options,
            verbose=args.verbose,
            what_if=args.what_if,
            tenant_id=args.tenant_id,
            container_prefix=args.prefix,
            fail_fast=args.fail_fast,
        )


# Singleton instance
_settings_instance: Optional[ToolSettings] = None


def get_settings() -> ToolSettings:
    """
    Get or create singleton settings instance

    Returns:
        ToolSettings instance
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = ToolSettings()
    return _settings_instance


def reload_settings() -> ToolSettings:
    """
    Force reload settings from environment

    Returns:
        New ToolSettings instance
    """
    global _settings_instance
    load_dotenv(override=True)
    _settings_instance = ToolSettings()
    return _settings_instance
