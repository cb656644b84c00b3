"""
ContentBridge data models.

Defines the content records exchanged between the export API and the
importer, and their wire format.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Any

from contentbridge.core.errors import ContentBridgeError

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
ZERO_TIMESTAMP = "0000-00-00 00:00:00"


class RecordFormatError(ContentBridgeError):
    """A wire payload could not be parsed into a model."""


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a `YYYY-MM-DD HH:MM:SS` (or ISO 8601) timestamp.

    The all-zero placeholder and empty values parse to None.
    """
    if value is None or value == "" or value == ZERO_TIMESTAMP:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.strptime(str(value), TIMESTAMP_FORMAT)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as e:
        raise RecordFormatError(f"Invalid timestamp: {value!r}") from e


def format_timestamp(value: datetime | None) -> str:
    if value is None:
        return ZERO_TIMESTAMP
    return value.strftime(TIMESTAMP_FORMAT)


def to_utc(value: datetime | None) -> datetime | None:
    """Normalize a timestamp for dedupe comparison (naive means UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_str(value: Any) -> str:
    return "" if value is None else str(value)


class MetaKind(Enum):
    """Shape of a stored meta value."""

    SCALAR = auto()
    LIST = auto()
    MAP = auto()


@dataclass(frozen=True)
class MetaValue:
    """A meta value tagged with its shape.

    A list becomes one stored entry per item; scalars and maps are stored
    as a single entry.
    """

    kind: MetaKind
    value: Any

    @classmethod
    def from_raw(cls, raw: Any) -> MetaValue:
        if isinstance(raw, list):
            return cls(MetaKind.LIST, list(raw))
        if isinstance(raw, dict):
            return cls(MetaKind.MAP, dict(raw))
        return cls(MetaKind.SCALAR, raw)

    def entries(self) -> list[Any]:
        if self.kind is MetaKind.LIST:
            return list(self.value)
        return [self.value]

    def to_raw(self) -> Any:
        return self.value


class FieldKind(Enum):
    """How a custom field value is imported."""

    PLAIN = auto()
    ATTACHMENT = auto()
    ATTACHMENT_LIST = auto()


class ReturnShape(Enum):
    """Shape a custom field value is stored in at the destination."""

    ID = "id"
    URL = "url"
    STRUCTURED = "array"


class MediaKind(Enum):
    """Kind of media being sideloaded."""

    IMAGE = "image"
    FILE = "file"


@dataclass
class MediaReference:
    """A featured image or an attachment referenced from a custom field."""

    url: str = ""
    alt: str = ""
    title: str = ""
    mime_type: str = ""
    id: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MediaReference:
        raw_id = data.get("ID") or data.get("id")
        return cls(
            url=_as_str(data.get("url")),
            alt=_as_str(data.get("alt")),
            title=_as_str(data.get("title")),
            mime_type=_as_str(data.get("mime_type")),
            id=_as_int(raw_id) or None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "url": self.url,
            "alt": self.alt,
            "title": self.title,
            "mime_type": self.mime_type,
        }
        if self.id:
            data["id"] = self.id
        return data


@dataclass
class AuthorRecord:
    """Author of a content record as seen by the exporting site."""

    email: str = ""
    login: str = ""
    display_name: str = ""
    nicename: str = ""
    url: str = ""
    registered: str = ""
    roles: list[str] = field(default_factory=list)
    first_name: str = ""
    last_name: str = ""
    nickname: str = ""
    description: str = ""
    source_id: int | None = None

    @property
    def profile_fields(self) -> dict[str, str]:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "nickname": self.nickname,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuthorRecord:
        roles = data.get("roles") or []
        if isinstance(roles, dict):
            roles = list(roles.values())
        return cls(
            email=_as_str(data.get("user_email")).strip(),
            login=_as_str(data.get("user_login")).strip(),
            display_name=_as_str(data.get("display_name")),
            nicename=_as_str(data.get("user_nicename")),
            url=_as_str(data.get("user_url")),
            registered=_as_str(data.get("user_registered")),
            roles=[str(r) for r in roles],
            first_name=_as_str(data.get("first_name")),
            last_name=_as_str(data.get("last_name")),
            nickname=_as_str(data.get("nickname")),
            description=_as_str(data.get("description")),
            source_id=_as_int(data.get("ID")) or None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "ID": self.source_id,
            "user_login": self.login,
            "display_name": self.display_name,
            "user_nicename": self.nicename,
            "user_email": self.email,
            "user_url": self.url,
            "user_registered": self.registered,
            "roles": list(self.roles),
            **self.profile_fields,
        }


@dataclass
class TermRecord:
    """A taxonomy term attached to a content record."""

    name: str
    slug: str
    description: str = ""
    parent: int = 0
    source_id: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TermRecord:
        slug = _as_str(data.get("slug"))
        name = _as_str(data.get("name")) or slug
        if not slug and not name:
            raise RecordFormatError("Term has neither slug nor name", details=dict(data))
        return cls(
            name=name,
            slug=slug,
            description=_as_str(data.get("description")),
            parent=_as_int(data.get("parent")),
            source_id=_as_int(data.get("term_id")) or None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "term_id": self.source_id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "parent": self.parent,
        }


@dataclass
class FieldRecord:
    """A structured custom field value (ACF-style)."""

    name: str
    key: str = ""
    type: str = ""
    return_format: str = ""
    value: Any = None

    @property
    def kind(self) -> FieldKind:
        if self.type in ("image", "file"):
            return FieldKind.ATTACHMENT
        if self.type == "gallery":
            return FieldKind.ATTACHMENT_LIST
        return FieldKind.PLAIN

    @property
    def shape(self) -> ReturnShape:
        if self.return_format == "url":
            return ReturnShape.URL
        if self.return_format == "array":
            return ReturnShape.STRUCTURED
        return ReturnShape.ID

    @property
    def media_kind(self) -> MediaKind:
        return MediaKind.FILE if self.type == "file" else MediaKind.IMAGE

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> FieldRecord:
        return cls(
            name=_as_str(data.get("name")) or name,
            key=_as_str(data.get("key")),
            type=_as_str(data.get("type")),
            return_format=_as_str(data.get("return_format")),
            value=data.get("value"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "type": self.type,
            "return_format": self.return_format,
            "value": self.value,
        }


@dataclass
class ContentRecord:
    """One exported post/page/custom post type entry."""

    id: int
    post_type: str
    status: str
    title: str = ""
    slug: str = ""
    content: str = ""
    excerpt: str = ""
    date: datetime | None = None
    date_gmt: datetime | None = None
    menu_order: int = 0
    comments_open: bool = True
    pings_open: bool = True
    author_source_id: int = 0
    meta: dict[str, MetaValue] = field(default_factory=dict)
    taxonomies: dict[str, list[TermRecord]] = field(default_factory=dict)
    featured_media: MediaReference | None = None
    author: AuthorRecord | None = None
    fields: dict[str, FieldRecord] = field(default_factory=dict)

    @property
    def dedupe_key(self) -> tuple[str, str, datetime | None]:
        return (self.post_type, self.slug, to_utc(self.date_gmt))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContentRecord:
        if not isinstance(data, dict):
            raise RecordFormatError("Record is not an object")
        try:
            record_id = int(data["ID"])
            post_type = str(data["post_type"])
        except (KeyError, TypeError, ValueError) as e:
            raise RecordFormatError("Record is missing ID or post_type", details={"error": str(e)}) from e

        meta_raw = data.get("meta") or {}
        taxonomies_raw = data.get("taxonomies") or {}
        if not isinstance(meta_raw, dict) or not isinstance(taxonomies_raw, dict):
            raise RecordFormatError(f"Record {record_id} has malformed meta or taxonomies")

        taxonomies: dict[str, list[TermRecord]] = {}
        for tax_name, terms in taxonomies_raw.items():
            taxonomies[str(tax_name)] = [
                TermRecord.from_dict(t) for t in (terms or []) if isinstance(t, dict)
            ]

        featured_raw = data.get("featured_image")
        featured = MediaReference.from_dict(featured_raw) if isinstance(featured_raw, dict) else None

        author_raw = data.get("author")
        author = AuthorRecord.from_dict(author_raw) if isinstance(author_raw, dict) and author_raw else None

        fields: dict[str, FieldRecord] = {}
        acf = data.get("acf")
        if isinstance(acf, dict) and isinstance(acf.get("fields"), dict):
            for name, field_data in acf["fields"].items():
                if isinstance(field_data, dict):
                    fields[str(name)] = FieldRecord.from_dict(str(name), field_data)

        return cls(
            id=record_id,
            post_type=post_type,
            status=_as_str(data.get("post_status")) or "publish",
            title=_as_str(data.get("post_title")),
            slug=_as_str(data.get("post_name")),
            content=_as_str(data.get("post_content")),
            excerpt=_as_str(data.get("post_excerpt")),
            date=parse_timestamp(data.get("post_date")),
            date_gmt=parse_timestamp(data.get("post_date_gmt")),
            menu_order=_as_int(data.get("menu_order")),
            comments_open=data.get("comment_status", "open") == "open",
            pings_open=data.get("ping_status", "open") == "open",
            author_source_id=_as_int(data.get("post_author")),
            meta={str(k): MetaValue.from_raw(v) for k, v in meta_raw.items()},
            taxonomies=taxonomies,
            featured_media=featured if featured and (featured.url or featured.id) else None,
            author=author,
            fields=fields,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "ID": self.id,
            "post_type": self.post_type,
            "post_title": self.title,
            "post_name": self.slug,
            "post_content": self.content,
            "post_excerpt": self.excerpt,
            "post_status": self.status,
            "post_date": format_timestamp(self.date),
            "post_date_gmt": format_timestamp(self.date_gmt),
            "post_author": self.author_source_id,
            "menu_order": self.menu_order,
            "comment_status": "open" if self.comments_open else "closed",
            "ping_status": "open" if self.pings_open else "closed",
            "meta": {k: v.to_raw() for k, v in self.meta.items()},
            "taxonomies": {
                tax: [t.to_dict() for t in terms] for tax, terms in self.taxonomies.items()
            },
            "acf": {"fields": {name: f.to_dict() for name, f in self.fields.items()}}
            if self.fields
            else [],
            "featured_image": self.featured_media.to_dict() if self.featured_media else None,
            "author": self.author.to_dict() if self.author else None,
        }


@dataclass(frozen=True)
class PostType:
    """An importable content type offered by the exporting site."""

    slug: str
    label: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PostType:
        slug = _as_str(data.get("slug"))
        if not slug:
            raise RecordFormatError("Post type without slug")
        return cls(slug=slug, label=_as_str(data.get("label")) or slug)

    def to_dict(self) -> dict[str, str]:
        return {"slug": self.slug, "label": self.label}


@dataclass
class RecordPage:
    """One page served by the export API."""

    start_id: int
    records: list[ContentRecord] = field(default_factory=list)
    total: int = 0

    @property
    def ids(self) -> list[int]:
        return [r.id for r in self.records]

    @property
    def max_id(self) -> int | None:
        return max(self.ids) if self.records else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": len(self.records),
            "startID": self.start_id,
            "total": self.total,
            "records": [r.to_dict() for r in self.records],
            "ids": self.ids,
        }
