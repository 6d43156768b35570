"""
CLI runner module.

Provides commands:
- process: Run one message through the pipeline
- balance: Show an account balance
- rules list / rules generate-accounts: Inspect and generate rules
- init-config: Write a default config file
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
