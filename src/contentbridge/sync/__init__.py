"""
ContentBridge import side.

Fetches pages from a remote export API and reconciles each record into
the destination store.
"""

from contentbridge.sync.client import (
    ExportAuthError,
    ExportClient,
    ExportClientError,
    ExportPayloadError,
    ExportTransportError,
)
from contentbridge.sync.driver import (
    BatchDriver,
    BatchFailedError,
    BatchStep,
    DriverState,
    RunReport,
)
from contentbridge.sync.fields import FieldImporter
from contentbridge.sync.media import MediaSideloader
from contentbridge.sync.reconciler import ReconcileOutcome, RecordReconciler
from contentbridge.sync.resolver import EntityResolver

__all__ = [
    "BatchDriver",
    "BatchFailedError",
    "BatchStep",
    "DriverState",
    "EntityResolver",
    "ExportAuthError",
    "ExportClient",
    "ExportClientError",
    "ExportPayloadError",
    "ExportTransportError",
    "FieldImporter",
    "MediaSideloader",
    "ReconcileOutcome",
    "RecordReconciler",
    "RunReport",
]
