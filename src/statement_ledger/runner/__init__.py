"""
CLI runner module.

Provides commands:
- preview: Parse a statement and show duplicates and category suggestions
- import: Preview and commit a statement to the ledger
- alias: Manage merchant aliases
- status: Store statistics
- init: Write a default config file
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
