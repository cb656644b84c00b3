"""
ContentBridge export service.

Serves records in bounded, id-ordered pages. Each call is stateless: the
caller passes the last id it has seen and gets back records strictly
after it.
"""

from __future__ import annotations

import hmac
import re
import secrets
import string
from dataclasses import replace
from pathlib import Path
from typing import Any

from contentbridge.core.config import ContentBridgeConfig
from contentbridge.core.errors import AuthError
from contentbridge.core.logging import get_logger
from contentbridge.core.models import (
    ContentRecord,
    FieldKind,
    FieldRecord,
    PostType,
    RecordPage,
)
from contentbridge.core.state import sanitize_key
from contentbridge.export.source import SourceStore

logger = get_logger(__name__)

TOKEN_LENGTH = 64
BEARER_PREFIX = "bearer "
_LEADING_INT = re.compile(r"\s*[-+]?\d+")


def generate_token(length: int = TOKEN_LENGTH) -> str:
    """Random alphanumeric API token."""
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def query_int(value: int | str | None) -> int:
    """Leading integer of a request value, 0 when there is none."""
    if isinstance(value, int):
        return value
    match = _LEADING_INT.match(value or "")
    return int(match.group()) if match else 0


def ensure_token(config: ContentBridgeConfig, config_path: Path | None = None) -> str:
    """Generate and save the export token once if none is configured."""
    if not config.export.token:
        config.export.token = generate_token()
        config.save(config_path)
        logger.info("Export token generated")
    return config.export.token


class ExportService:
    """Pages records out of a source store."""

    def __init__(self, source: SourceStore, token: str, default_count: int = 10) -> None:
        self.source = source
        self._token = token
        self.default_count = default_count

    def authenticate(self, authorization: str | None) -> None:
        """Check an `Authorization: Bearer <token>` header value."""
        header = authorization or ""
        if not header.lower().startswith(BEARER_PREFIX):
            raise AuthError("Missing bearer token")

        presented = header[len(BEARER_PREFIX):].strip()
        if not self._token or not hmac.compare_digest(
            self._token.encode(), presented.encode()
        ):
            raise AuthError("Invalid token")

    def fetch_page(
        self,
        post_type: str = "post",
        status: str = "publish",
        start_id: int | str | None = 0,
        count: int | str | None = None,
    ) -> RecordPage:
        """Records of (post_type, status) with id > start_id, ascending."""
        count = abs(query_int(count))
        if count <= 0:
            count = self.default_count
        start_id = abs(query_int(start_id))
        post_type = sanitize_key(post_type) or "post"
        status = sanitize_key(status) or "publish"

        ids = self.source.list_ids(post_type, status, start_id, count)
        if not ids:
            return RecordPage(start_id=start_id, records=[], total=0)

        records = [self._export_record(r) for r in self.source.get_records(ids)]
        total = self.source.count_after(post_type, status, start_id)

        logger.debug(
            "Page served",
            post_type=post_type,
            status=status,
            start_id=start_id,
            count=len(records),
            total=total,
        )
        return RecordPage(start_id=start_id, records=records, total=total)

    def fetch_types(self) -> list[PostType]:
        return self.source.list_post_types()

    def _export_record(self, record: ContentRecord) -> ContentRecord:
        if not record.fields:
            return record
        fields = {name: self._export_field(f) for name, f in record.fields.items()}
        return replace(record, fields=fields)

    def _export_field(self, field: FieldRecord) -> FieldRecord:
        if field.kind is FieldKind.ATTACHMENT:
            return replace(field, value=self._format_attachment(field.value))
        if field.kind is FieldKind.ATTACHMENT_LIST:
            if not field.value:
                return field
            items = field.value if isinstance(field.value, list) else []
            return replace(
                field,
                value=[
                    self._format_attachment(item)
                    for item in items
                    if isinstance(item, (int, str, dict))
                ],
            )
        return field

    def _format_attachment(self, value: Any) -> Any:
        """Expand an attachment id into {id, url, alt, title, mime_type}."""
        attachment_id = 0
        if isinstance(value, bool):
            return value
        if isinstance(value, int) or (isinstance(value, str) and value.isdigit()):
            attachment_id = int(value)
        elif isinstance(value, dict):
            raw = value.get("ID") or value.get("id")
            try:
                attachment_id = int(raw) if raw else 0
            except (TypeError, ValueError):
                attachment_id = 0

        if not attachment_id:
            return value

        attachment = self.source.get_attachment(attachment_id)
        if attachment is None:
            return value

        return {
            "id": attachment_id,
            "url": attachment.url,
            "alt": attachment.alt,
            "title": attachment.title,
            "mime_type": attachment.mime_type,
        }
