"""
ContentBridge in-memory destination store.

Keeps posts, terms, users and attachments in dictionaries. The JSON
variant snapshots the same state to disk on every flush, which makes it
usable as a durable local destination.
"""

from __future__ import annotations

import hashlib
import json
import secrets
import shutil
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any
from urllib.parse import quote

from contentbridge.core.errors import DestinationError
from contentbridge.core.logging import get_logger
from contentbridge.core.models import (
    MediaReference,
    format_timestamp,
    parse_timestamp,
    to_utc,
)
from contentbridge.destination.base import DestinationStore, NewUser, PostFields

logger = get_logger(__name__)

DEFAULT_TAXONOMIES = ("category", "post_tag")
ATTACHMENT_TYPE = "attachment"
ALT_META_KEY = "_wp_attachment_image_alt"


@dataclass
class StoredPost:
    id: int
    fields: PostFields
    meta: dict[str, list[Any]] = field(default_factory=dict)
    terms: dict[str, list[int]] = field(default_factory=dict)
    featured_media_id: int | None = None
    parent_id: int | None = None
    file_name: str = ""
    mime_type: str = ""
    url: str = ""


@dataclass
class StoredTerm:
    id: int
    taxonomy: str
    name: str
    slug: str
    description: str = ""


@dataclass
class StoredUser:
    id: int
    login: str
    password_hash: str = field(repr=False)
    email: str = ""
    display_name: str = ""
    nicename: str = ""
    url: str = ""
    role: str | None = None
    registered: str | None = None
    meta: dict[str, str] = field(default_factory=dict)


def _hash_password(password: str) -> str:
    salt = secrets.token_hex(8)
    digest = hashlib.sha256(f"{salt}:{password}".encode()).hexdigest()
    return f"sha256${salt}${digest}"


class InMemoryDestination(DestinationStore):
    """Destination store held entirely in memory."""

    def __init__(
        self,
        taxonomies: tuple[str, ...] | list[str] = DEFAULT_TAXONOMIES,
        media_directory: Path | None = None,
        base_url: str = "http://localhost:8000/media",
    ) -> None:
        self.taxonomies = set(taxonomies)
        self.media_directory = media_directory
        self.base_url = base_url.rstrip("/")
        self.posts: dict[int, StoredPost] = {}
        self.terms: dict[int, StoredTerm] = {}
        self.users: dict[int, StoredUser] = {}
        self._next_post_id = 1
        self._next_term_id = 1
        self._next_user_id = 1

    @property
    def name(self) -> str:
        return "memory"

    def _get_post(self, post_id: int) -> StoredPost:
        post = self.posts.get(post_id)
        if post is None:
            raise DestinationError(f"Post not found: {post_id}")
        return post

    # ==================== Posts ====================

    def find_post(self, post_type: str, slug: str, date_gmt: datetime | None) -> int | None:
        wanted = to_utc(date_gmt)
        for post in self.posts.values():
            if (
                post.fields.post_type == post_type
                and post.fields.slug == slug
                and to_utc(post.fields.date_gmt) == wanted
            ):
                return post.id
        return None

    def insert_post(self, fields: PostFields) -> int:
        if not fields.post_type:
            raise DestinationError("Cannot insert a post without a type")
        post_id = self._next_post_id
        self._next_post_id += 1
        self.posts[post_id] = StoredPost(id=post_id, fields=fields)
        return post_id

    def update_post(self, post_id: int, fields: PostFields) -> None:
        self._get_post(post_id).fields = fields

    def get_post(self, post_id: int) -> StoredPost | None:
        return self.posts.get(post_id)

    def posts_of_type(self, post_type: str) -> list[StoredPost]:
        return [p for p in self.posts.values() if p.fields.post_type == post_type]

    # ==================== Taxonomies ====================

    def taxonomy_exists(self, taxonomy: str) -> bool:
        return taxonomy in self.taxonomies

    def get_term_by_slug(self, taxonomy: str, slug: str) -> int | None:
        for term in self.terms.values():
            if term.taxonomy == taxonomy and term.slug == slug:
                return term.id
        return None

    def insert_term(self, taxonomy: str, name: str, slug: str, description: str = "") -> int:
        if not self.taxonomy_exists(taxonomy):
            raise DestinationError(f"Unknown taxonomy: {taxonomy}")
        if self.get_term_by_slug(taxonomy, slug) is not None:
            raise DestinationError(f"Term already exists: {taxonomy}/{slug}")
        term_id = self._next_term_id
        self._next_term_id += 1
        self.terms[term_id] = StoredTerm(
            id=term_id, taxonomy=taxonomy, name=name, slug=slug, description=description
        )
        return term_id

    def set_post_terms(self, post_id: int, taxonomy: str, term_ids: list[int]) -> None:
        # Duplicates collapse, order of first appearance kept.
        self._get_post(post_id).terms[taxonomy] = list(dict.fromkeys(term_ids))

    # ==================== Meta ====================

    def delete_post_meta(self, post_id: int, key: str) -> None:
        self._get_post(post_id).meta.pop(key, None)

    def add_post_meta(self, post_id: int, key: str, value: Any) -> None:
        self._get_post(post_id).meta.setdefault(key, []).append(value)

    def get_post_meta(self, post_id: int, key: str) -> list[Any]:
        return list(self._get_post(post_id).meta.get(key, []))

    # ==================== Users ====================

    def find_user(self, by: str, value: str) -> int | None:
        if not value:
            return None
        attribute = {"email": "email", "login": "login", "slug": "nicename"}.get(by)
        if attribute is None:
            raise ValueError(f"Unsupported user lookup: {by}")
        for user in self.users.values():
            stored = getattr(user, attribute)
            if by == "email":
                if stored.lower() == value.lower():
                    return user.id
            elif stored == value:
                return user.id
        return None

    def insert_user(self, user: NewUser) -> int:
        if not user.login:
            raise DestinationError("Cannot create a user without a login")
        if self.username_exists(user.login):
            raise DestinationError(f"Login already taken: {user.login}")
        if user.email and self.find_user("email", user.email) is not None:
            raise DestinationError(f"Email already registered: {user.email}")
        user_id = self._next_user_id
        self._next_user_id += 1
        self.users[user_id] = StoredUser(
            id=user_id,
            login=user.login,
            password_hash=_hash_password(user.password),
            email=user.email,
            display_name=user.display_name or user.login,
            nicename=user.nicename or user.login.lower(),
            url=user.url,
            role=user.role,
            registered=user.registered,
        )
        return user_id

    def update_user_meta(self, user_id: int, key: str, value: str) -> None:
        user = self.users.get(user_id)
        if user is None:
            raise DestinationError(f"User not found: {user_id}")
        user.meta[key] = value

    # ==================== Attachments ====================

    def attachment_exists(self, attachment_id: int) -> bool:
        post = self.posts.get(attachment_id)
        return post is not None and post.fields.post_type == ATTACHMENT_TYPE

    def get_attachment(self, attachment_id: int) -> MediaReference | None:
        if not self.attachment_exists(attachment_id):
            return None
        post = self.posts[attachment_id]
        alt_values = post.meta.get(ALT_META_KEY) or [""]
        return MediaReference(
            url=post.url,
            alt=str(alt_values[0]),
            title=post.fields.title,
            mime_type=post.mime_type,
            id=attachment_id,
        )

    def create_attachment(
        self,
        file_path: Path,
        filename: str,
        mime_type: str,
        parent_id: int | None = None,
        title: str = "",
        alt: str = "",
    ) -> int:
        if not file_path.exists():
            raise DestinationError(f"Attachment source missing: {file_path}")

        attachment_id = self.insert_post(
            PostFields(
                post_type=ATTACHMENT_TYPE,
                title=title or Path(filename).stem,
                slug=Path(filename).stem.lower(),
                status="inherit",
            )
        )
        post = self.posts[attachment_id]
        post.parent_id = parent_id
        post.file_name = filename
        post.mime_type = mime_type
        post.url = f"{self.base_url}/{attachment_id}/{quote(filename)}"

        if self.media_directory is not None:
            target = self.media_directory / str(attachment_id) / filename
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(file_path, target)

        if alt:
            self.update_post_meta(attachment_id, ALT_META_KEY, alt)
        return attachment_id

    def set_featured_media(self, post_id: int, attachment_id: int) -> None:
        if not self.attachment_exists(attachment_id):
            raise DestinationError(f"Attachment not found: {attachment_id}")
        self._get_post(post_id).featured_media_id = attachment_id

    # ==================== Snapshots ====================

    def to_snapshot(self) -> dict[str, Any]:
        posts = []
        for post in self.posts.values():
            data = asdict(post)
            data["fields"]["date"] = format_timestamp(post.fields.date)
            data["fields"]["date_gmt"] = format_timestamp(post.fields.date_gmt)
            posts.append(data)
        return {
            "taxonomies": sorted(self.taxonomies),
            "posts": posts,
            "terms": [asdict(t) for t in self.terms.values()],
            "users": [asdict(u) for u in self.users.values()],
        }

    def load_snapshot(self, snapshot: dict[str, Any]) -> None:
        self.taxonomies = set(snapshot.get("taxonomies") or DEFAULT_TAXONOMIES)
        self.posts = {}
        for data in snapshot.get("posts", []):
            fields_data = dict(data.pop("fields"))
            fields_data["date"] = parse_timestamp(fields_data.get("date"))
            fields_data["date_gmt"] = parse_timestamp(fields_data.get("date_gmt"))
            post = StoredPost(fields=PostFields(**fields_data), **data)
            post.terms = {k: [int(i) for i in v] for k, v in post.terms.items()}
            self.posts[post.id] = post
        self.terms = {t["id"]: StoredTerm(**t) for t in snapshot.get("terms", [])}
        self.users = {u["id"]: StoredUser(**u) for u in snapshot.get("users", [])}
        self._next_post_id = max(self.posts, default=0) + 1
        self._next_term_id = max(self.terms, default=0) + 1
        self._next_user_id = max(self.users, default=0) + 1


class JsonFileDestination(InMemoryDestination):
    """In-memory store snapshotted to a JSON file on every flush."""

    def __init__(
        self,
        path: Path,
        media_directory: Path | None = None,
        base_url: str = "http://localhost:8000/media",
        taxonomies: tuple[str, ...] | list[str] = DEFAULT_TAXONOMIES,
    ) -> None:
        super().__init__(taxonomies=taxonomies, media_directory=media_directory, base_url=base_url)
        self.path = path
        if path.exists():
            with open(path) as handle:
                self.load_snapshot(json.load(handle))
            logger.debug("Destination snapshot loaded", path=str(path), posts=len(self.posts))

    @property
    def name(self) -> str:
        return "json"

    def flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w") as handle:
            json.dump(self.to_snapshot(), handle, indent=2, default=str)
        tmp_path.replace(self.path)
