"""
ContentBridge export API client.

Fetches pages and the post type list from a remote export API with a
bearer token. Every request gets one bounded wait; there are no retries.
A failed or malformed response is fatal for that fetch and nothing from
it is interpreted.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import urlsplit, urlunsplit

import requests

from contentbridge.core.config import RemoteConfig
from contentbridge.core.errors import AuthError, ConfigError, ContentBridgeError
from contentbridge.core.logging import get_logger
from contentbridge.core.models import (
    ContentRecord,
    PostType,
    RecordFormatError,
    RecordPage,
)

logger = get_logger(__name__)


class ExportClientError(ContentBridgeError):
    """Base class for failed export API fetches."""


class ExportAuthError(ExportClientError, AuthError):
    """The export API rejected the token."""


class ExportTransportError(ExportClientError):
    """Network failure, timeout or non-success HTTP status."""


class ExportPayloadError(ExportClientError):
    """The response body is not a valid page or type list."""


def build_post_types_endpoint(posts_url: str) -> str:
    """Sibling `post-types` endpoint of the configured posts URL."""
    parts = urlsplit(posts_url)
    path = parts.path.rstrip("/")
    base = path.rsplit("/", 1)[0] if "/" in path else ""
    return urlunsplit((parts.scheme, parts.netloc, f"{base}/post-types", "", ""))


def validate_page(page: RecordPage, cursor: int, limit: int) -> None:
    """Check the ordering contract of a page against the requested cursor."""
    previous = cursor
    for record in page.records:
        if record.id <= previous:
            raise ExportPayloadError(
                f"Record {record.id} breaks page ordering after id {previous}",
                details={"cursor": cursor, "ids": page.ids},
            )
        previous = record.id
    if len(page.records) > limit:
        raise ExportPayloadError(
            f"Page has {len(page.records)} records, more than the requested {limit}"
        )


class ExportClient:
    """HTTP client for the export API."""

    def __init__(
        self,
        posts_url: str,
        token: str,
        *,
        session: requests.Session | None = None,
        timeout_seconds: float = 30.0,
        types_timeout_seconds: float = 20.0,
    ) -> None:
        if not posts_url or not token:
            raise ConfigError("Remote URL or token not configured.")
        self.posts_url = posts_url.split("?", 1)[0]
        self._token = token
        self._session = session or requests.Session()
        self.timeout_seconds = timeout_seconds
        self.types_timeout_seconds = types_timeout_seconds

    @classmethod
    def from_config(cls, config: RemoteConfig, session: requests.Session | None = None) -> ExportClient:
        return cls(
            config.posts_url,
            config.token,
            session=session,
            timeout_seconds=config.timeout_seconds,
            types_timeout_seconds=config.types_timeout_seconds,
        )

    @property
    def post_types_url(self) -> str:
        return build_post_types_endpoint(self.posts_url)

    def fetch_page(
        self,
        post_type: str,
        status: str,
        cursor: int,
        limit: int,
    ) -> RecordPage:
        """Records with id > cursor, ascending, at most `limit` of them."""
        params = {
            "count": limit,
            "startID": cursor,
            "post_type": post_type,
            "status": status,
        }
        payload = self._get_json(self.posts_url, params, self.timeout_seconds)

        raw_records = payload.get("records")
        if not isinstance(raw_records, list):
            raise ExportPayloadError("Invalid JSON from remote: missing records")

        try:
            records = [ContentRecord.from_dict(r) for r in raw_records]
        except RecordFormatError as e:
            raise ExportPayloadError(f"Invalid record from remote: {e.message}") from e

        try:
            total = int(payload.get("total") or 0)
        except (TypeError, ValueError):
            total = 0

        page = RecordPage(start_id=cursor, records=records, total=total)
        validate_page(page, cursor, limit)

        logger.debug(
            "Page fetched",
            post_type=post_type,
            status=status,
            cursor=cursor,
            count=len(records),
        )
        return page

    def fetch_types(self) -> list[PostType]:
        """Importable post types offered by the remote site."""
        payload = self._get_json(self.post_types_url, None, self.types_timeout_seconds)
        raw_types = payload.get("post_types")
        if not isinstance(raw_types, list):
            raise ExportPayloadError("Invalid JSON from remote: missing post_types")
        try:
            return [PostType.from_dict(t) for t in raw_types if isinstance(t, dict)]
        except RecordFormatError as e:
            raise ExportPayloadError(f"Invalid post type from remote: {e.message}") from e

    def _get_json(
        self, url: str, params: dict[str, Any] | None, timeout: float
    ) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/json",
        }
        try:
            resp = self._session.get(url, params=params, headers=headers, timeout=timeout)
        except requests.Timeout as e:
            raise ExportTransportError(f"Remote request timed out after {timeout}s") from e
        except requests.RequestException as e:
            raise ExportTransportError(f"Remote request failed: {e}") from e

        if resp.status_code in (401, 403):
            raise ExportAuthError(
                f"Remote request HTTP {resp.status_code}",
                details={"body": resp.text[:2000]},
            )
        if not 200 <= resp.status_code < 300:
            raise ExportTransportError(
                f"Remote request HTTP {resp.status_code}",
                details={"body": resp.text[:2000]},
            )

        try:
            payload = resp.json()
        except ValueError as e:
            raise ExportPayloadError("Invalid JSON from remote.") from e

        if not isinstance(payload, dict):
            raise ExportPayloadError("Invalid JSON from remote.")
        return payload
