"""
ContentBridge media sideloading.

Downloads a remote media URL into a temporary file and registers it as
an attachment in the destination store.
"""

from __future__ import annotations

import mimetypes
import os
import tempfile
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlsplit

import humanize
import requests

from contentbridge.core.config import MediaConfig
from contentbridge.core.errors import ContentBridgeError
from contentbridge.core.logging import get_logger
from contentbridge.core.models import MediaKind
from contentbridge.destination.base import DestinationStore

logger = get_logger(__name__)

DEFAULT_FILENAME = "download"


def filename_from_url(url: str) -> str:
    """Basename of the URL path, percent-decoded."""
    name = PurePosixPath(unquote(urlsplit(url).path)).name
    return name or DEFAULT_FILENAME


def title_from_filename(filename: str) -> str:
    stem = PurePosixPath(filename).stem
    return stem.replace("-", " ").replace("_", " ").strip() or stem


def detect_mime_type(filename: str, content_type: str | None) -> str:
    """MIME type from the response header, else from the extension."""
    if content_type:
        mime = content_type.split(";", 1)[0].strip().lower()
        if mime and mime != "application/octet-stream":
            return mime
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"


class MediaSideloader:
    """Fetches remote media and materializes local attachments."""

    def __init__(
        self,
        destination: DestinationStore,
        config: MediaConfig | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.destination = destination
        self.config = config or MediaConfig()
        self._session = session or requests.Session()

    def sideload(
        self,
        url: str,
        owner_id: int | None,
        alt: str = "",
        kind: MediaKind = MediaKind.IMAGE,
    ) -> int | None:
        """Download `url` and attach it to `owner_id`.

        Returns the new attachment id, or None on any transport or storage
        failure. The temporary download is always removed.
        """
        if not url:
            return None

        tmp_path: Path | None = None
        try:
            tmp_path, content_type, size = self._download(url)
            filename = filename_from_url(url)
            mime_type = detect_mime_type(filename, content_type)

            if kind is MediaKind.IMAGE:
                if not mime_type.startswith("image/"):
                    logger.warning("Sideload rejected non-image", url=url, mime_type=mime_type)
                    return None
                attachment_id = self.destination.create_attachment(
                    tmp_path,
                    filename,
                    mime_type,
                    parent_id=owner_id,
                    title=title_from_filename(filename),
                    alt=alt.strip(),
                )
            else:
                attachment_id = self.destination.create_attachment(
                    tmp_path,
                    filename,
                    mime_type,
                    parent_id=owner_id,
                    title=PurePosixPath(filename).stem,
                )

            logger.info(
                "Media sideloaded",
                url=url,
                attachment_id=attachment_id,
                kind=kind.value,
                size=humanize.naturalsize(size, binary=True),
            )
            return attachment_id
        except (requests.RequestException, OSError, ContentBridgeError) as e:
            logger.warning("Sideload failed", url=url, kind=kind.value, error=str(e))
            return None
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except FileNotFoundError:
                    pass

    def _download(self, url: str) -> tuple[Path, str | None, int]:
        headers = {"User-Agent": self.config.user_agent}
        resp = self._session.get(
            url, headers=headers, timeout=self.config.timeout_seconds, stream=True
        )
        try:
            resp.raise_for_status()
            suffix = PurePosixPath(filename_from_url(url)).suffix
            fd, name = tempfile.mkstemp(prefix="contentbridge-", suffix=suffix)
            tmp_path = Path(name)
            size = 0
            try:
                with os.fdopen(fd, "wb") as handle:
                    for chunk in resp.iter_content(chunk_size=self.config.chunk_size):
                        if chunk:
                            handle.write(chunk)
                            size += len(chunk)
            except BaseException:
                tmp_path.unlink(missing_ok=True)
                raise
            return tmp_path, resp.headers.get("Content-Type"), size
        finally:
            resp.close()
