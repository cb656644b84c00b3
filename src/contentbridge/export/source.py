"""
ContentBridge export sources.

A source store is what the export API pages over: records partitioned by
(type, status) and ordered by id, plus an attachment catalogue used to
expand media references.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from contentbridge.core.logging import get_logger
from contentbridge.core.models import ContentRecord, MediaReference, PostType

logger = get_logger(__name__)


class SourceStore(ABC):
    """Abstract base class for stores served by the export API."""

    @abstractmethod
    def list_ids(self, post_type: str, status: str, after_id: int, limit: int) -> list[int]:
        """Ids in the partition greater than `after_id`, ascending, at most `limit`."""

    @abstractmethod
    def count_after(self, post_type: str, status: str, after_id: int) -> int:
        """Number of records in the partition with id greater than `after_id`."""

    @abstractmethod
    def get_records(self, ids: list[int]) -> list[ContentRecord]:
        """Records for `ids`, in the same order."""

    @abstractmethod
    def get_attachment(self, attachment_id: int) -> MediaReference | None:
        """Attachment metadata, or None if unknown."""

    @abstractmethod
    def list_post_types(self) -> list[PostType]:
        """Public content types that can be exported."""


class InMemorySource(SourceStore):
    """Source store backed by a list of records."""

    def __init__(
        self,
        records: list[ContentRecord] | None = None,
        attachments: dict[int, MediaReference] | None = None,
        post_types: list[PostType] | None = None,
    ) -> None:
        self._records: dict[int, ContentRecord] = {}
        for record in records or []:
            self.add(record)
        self._attachments = dict(attachments or {})
        self._post_types = list(post_types) if post_types is not None else None

    def add(self, record: ContentRecord) -> None:
        if record.id in self._records:
            raise ValueError(f"Duplicate record id: {record.id}")
        self._records[record.id] = record

    def add_attachment(self, attachment: MediaReference) -> None:
        if not attachment.id:
            raise ValueError("Attachment needs an id")
        self._attachments[attachment.id] = attachment

    def _partition(self, post_type: str, status: str) -> list[ContentRecord]:
        return sorted(
            (
                r
                for r in self._records.values()
                if r.post_type == post_type and r.status == status
            ),
            key=lambda r: r.id,
        )

    def list_ids(self, post_type: str, status: str, after_id: int, limit: int) -> list[int]:
        ids = [r.id for r in self._partition(post_type, status) if r.id > after_id]
        return ids[:limit]

    def count_after(self, post_type: str, status: str, after_id: int) -> int:
        return sum(1 for r in self._partition(post_type, status) if r.id > after_id)

    def get_records(self, ids: list[int]) -> list[ContentRecord]:
        return [self._records[i] for i in ids if i in self._records]

    def get_attachment(self, attachment_id: int) -> MediaReference | None:
        return self._attachments.get(attachment_id)

    def list_post_types(self) -> list[PostType]:
        if self._post_types is not None:
            return list(self._post_types)
        slugs = sorted({r.post_type for r in self._records.values()})
        return [PostType(slug=s, label=s.replace("_", " ").title()) for s in slugs]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InMemorySource:
        records = [ContentRecord.from_dict(r) for r in data.get("records", [])]
        attachments = {}
        for raw in data.get("attachments", []):
            attachment = MediaReference.from_dict(raw)
            if attachment.id:
                attachments[attachment.id] = attachment
        post_types = None
        if "post_types" in data:
            post_types = [PostType.from_dict(p) for p in data["post_types"]]
        return cls(records=records, attachments=attachments, post_types=post_types)

    @classmethod
    def from_file(cls, path: Path) -> InMemorySource:
        """Load a source dump: {"records": [...], "attachments": [...], "post_types": [...]}."""
        with open(path) as handle:
            data = json.load(handle)
        source = cls.from_dict(data)
        logger.info("Source loaded", path=str(path), records=len(source._records))
        return source
