"""
ContentBridge destination stores.

Abstract store interface the importer writes through, plus the
in-memory and JSON snapshot implementations.
"""

from __future__ import annotations

from contentbridge.destination.base import DestinationStore, NewUser, PostFields
from contentbridge.destination.memory import InMemoryDestination, JsonFileDestination

__all__ = [
    "DestinationStore",
    "NewUser",
    "PostFields",
    "InMemoryDestination",
    "JsonFileDestination",
]
