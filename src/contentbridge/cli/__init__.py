"""
ContentBridge CLI Module.

Command-line interface for ContentBridge imports and the export server.
"""

from contentbridge.cli.main import cli, main

__all__ = ["cli", "main"]
