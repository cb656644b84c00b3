"""
ContentBridge export side.

Serves records from a source store as cursor-paginated pages over HTTP.
"""

from contentbridge.export.service import ExportService, ensure_token, generate_token
from contentbridge.export.source import InMemorySource, SourceStore

__all__ = ["ExportService", "InMemorySource", "SourceStore", "ensure_token", "generate_token"]
