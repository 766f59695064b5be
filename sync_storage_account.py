#!/usr/bin/env python3
"""
Main entry point for storage account to local directory sync.
Run this script to mirror every blob container of a storage account with azcopy.

Usage:
    python sync_storage_account.py -c <client-id> -t <thumbprint> -k <key-vault-url> -s <secret-name>
"""

import sys

from storage_sync.cli import main

if __name__ == "__main__":
    sys.exit(main())
