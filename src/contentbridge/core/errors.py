"""
ContentBridge exception hierarchy.

Run-level failures (auth, transport, payload) propagate to the operator;
destination failures are isolated per record by the reconciler.
"""

from __future__ import annotations

from typing import Any


class ContentBridgeError(Exception):
    """Base class for all ContentBridge errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigError(ContentBridgeError):
    """Required configuration is missing or invalid."""


class AuthError(ContentBridgeError):
    """A request to the export API was not authorized."""


class DestinationError(ContentBridgeError):
    """A destination store rejected a write."""
