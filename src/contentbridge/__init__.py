"""
ContentBridge - Resumable batch content migration between content stores.

Pages through an exporting site with a cursor, reconciles every record
into the destination store (authors, taxonomy terms, media, custom
fields) and keeps a per-type watermark so interrupted runs pick up where
they stopped.
"""

__version__ = "1.0.0"
__author__ = "ContentBridge Team"

from contentbridge.core.config import ContentBridgeConfig
from contentbridge.core.session import Session

__all__ = ["ContentBridgeConfig", "Session", "__version__"]
