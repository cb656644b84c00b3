"""
ContentBridge Core - shared service layer.

Configuration, logging, data models, watermark state, job execution
and session management used by both the export and import sides.
"""

from contentbridge.core.config import ContentBridgeConfig
from contentbridge.core.errors import ConfigError, ContentBridgeError
from contentbridge.core.job import Job, JobResult, JobRunner, JobStatus
from contentbridge.core.logging import get_logger, setup_logging
from contentbridge.core.session import Session

__all__ = [
    "ConfigError",
    "ContentBridgeConfig",
    "ContentBridgeError",
    "Job",
    "JobResult",
    "JobRunner",
    "JobStatus",
    "Session",
    "get_logger",
    "setup_logging",
]
