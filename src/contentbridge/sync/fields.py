"""
ContentBridge custom field import.

Each field is dispatched once on its kind (plain, single attachment,
attachment list) and stored in its declared return shape.
"""

from __future__ import annotations

from typing import Any

from contentbridge.core.logging import get_logger
from contentbridge.core.models import FieldKind, FieldRecord, MediaKind, ReturnShape
from contentbridge.destination.base import DestinationStore
from contentbridge.sync.resolver import EntityResolver

logger = get_logger(__name__)


class FieldImporter:
    """Writes structured custom field values onto destination posts."""

    def __init__(self, destination: DestinationStore, resolver: EntityResolver) -> None:
        self.destination = destination
        self.resolver = resolver

    def import_field(self, post_id: int, field: FieldRecord) -> Any:
        """Store one field on `post_id`. Returns the value written."""
        if field.kind is FieldKind.ATTACHMENT:
            value = self._import_attachment(post_id, field)
        elif field.kind is FieldKind.ATTACHMENT_LIST:
            value = self._import_attachment_list(post_id, field)
        else:
            value = field.value

        self.destination.update_field(post_id, field.name, field.key, value)
        logger.debug(
            "Field stored",
            post_id=post_id,
            field=field.name,
            kind=field.kind.name,
            shape=field.shape.value,
        )
        return value

    def _import_attachment(self, post_id: int, field: FieldRecord) -> Any:
        attachment_id = self.resolver.resolve_attachment(field.value, post_id, field.media_kind)
        if attachment_id is None:
            # Keep whatever the source sent.
            return field.value
        return self._shape(attachment_id, field.shape, field.media_kind)

    def _import_attachment_list(self, post_id: int, field: FieldRecord) -> Any:
        if not isinstance(field.value, list):
            return field.value

        values = []
        for item in field.value:
            attachment_id = self.resolver.resolve_attachment(item, post_id, field.media_kind)
            if attachment_id is None:
                logger.debug("Gallery item dropped", post_id=post_id, field=field.name)
                continue
            values.append(self._shape(attachment_id, field.shape, field.media_kind))
        return values

    def _shape(self, attachment_id: int, shape: ReturnShape, kind: MediaKind) -> Any:
        if shape is ReturnShape.ID:
            return attachment_id

        attachment = self.destination.get_attachment(attachment_id)
        if attachment is None:
            return attachment_id

        if shape is ReturnShape.URL:
            return attachment.url

        structured: dict[str, Any] = {
            "ID": attachment_id,
            "id": attachment_id,
            "url": attachment.url,
            "title": attachment.title,
            "mime_type": attachment.mime_type,
        }
        if kind is MediaKind.IMAGE:
            structured["alt"] = attachment.alt
        return structured
