"""
ContentBridge Destination Store Base.

Defines the abstract interface the importer writes through. Concrete
stores map these calls onto a CMS, a database or a local snapshot.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from contentbridge.core.models import MediaReference


@dataclass
class PostFields:
    """Base columns of a destination post."""

    post_type: str
    title: str = ""
    slug: str = ""
    content: str = ""
    excerpt: str = ""
    status: str = "publish"
    date: datetime | None = None
    date_gmt: datetime | None = None
    menu_order: int = 0
    comments_open: bool = True
    pings_open: bool = True
    author_id: int | None = None


@dataclass
class NewUser:
    """Data for a user created by the importer."""

    login: str
    password: str = field(repr=False)
    email: str = ""
    display_name: str = ""
    nicename: str = ""
    url: str = ""
    role: str | None = None
    registered: str | None = None


class DestinationStore(ABC):
    """Abstract base class for stores the importer writes into."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Store name (e.g., 'memory', 'json')."""

    # ==================== Posts ====================

    @abstractmethod
    def find_post(self, post_type: str, slug: str, date_gmt: datetime | None) -> int | None:
        """Find a post by type, slug and exact UTC timestamp."""

    @abstractmethod
    def insert_post(self, fields: PostFields) -> int:
        """Create a post. Returns its id."""

    @abstractmethod
    def update_post(self, post_id: int, fields: PostFields) -> None:
        """Overwrite the base columns of an existing post."""

    # ==================== Taxonomies ====================

    @abstractmethod
    def taxonomy_exists(self, taxonomy: str) -> bool:
        """Whether the taxonomy is registered at the destination."""

    @abstractmethod
    def get_term_by_slug(self, taxonomy: str, slug: str) -> int | None:
        """Find a term id by slug."""

    @abstractmethod
    def insert_term(self, taxonomy: str, name: str, slug: str, description: str = "") -> int:
        """Create a term. Returns its id."""

    @abstractmethod
    def set_post_terms(self, post_id: int, taxonomy: str, term_ids: list[int]) -> None:
        """Replace the post's terms for one taxonomy."""

    # ==================== Meta & fields ====================

    @abstractmethod
    def delete_post_meta(self, post_id: int, key: str) -> None:
        """Remove every value stored under `key`."""

    @abstractmethod
    def add_post_meta(self, post_id: int, key: str, value: Any) -> None:
        """Append one value under `key`."""

    @abstractmethod
    def get_post_meta(self, post_id: int, key: str) -> list[Any]:
        """All values stored under `key`."""

    def update_post_meta(self, post_id: int, key: str, value: Any) -> None:
        """Store exactly one value under `key`."""
        self.delete_post_meta(post_id, key)
        self.add_post_meta(post_id, key, value)

    def update_field(self, post_id: int, name: str, key: str, value: Any) -> None:
        """Store a custom field value, remembering its stable key."""
        self.update_post_meta(post_id, name, value)
        if key:
            self.update_post_meta(post_id, f"_{name}", key)

    # ==================== Users ====================

    @abstractmethod
    def find_user(self, by: str, value: str) -> int | None:
        """Find a user id by 'email', 'login' or 'slug'."""

    @abstractmethod
    def insert_user(self, user: NewUser) -> int:
        """Create a user. Returns its id."""

    @abstractmethod
    def update_user_meta(self, user_id: int, key: str, value: str) -> None:
        """Set a profile field on a user."""

    def username_exists(self, login: str) -> bool:
        return self.find_user("login", login) is not None

    # ==================== Attachments ====================

    @abstractmethod
    def attachment_exists(self, attachment_id: int) -> bool:
        """Whether an attachment with this id exists."""

    @abstractmethod
    def get_attachment(self, attachment_id: int) -> MediaReference | None:
        """Destination URL, title, MIME type and alt text of an attachment."""

    @abstractmethod
    def create_attachment(
        self,
        file_path: Path,
        filename: str,
        mime_type: str,
        parent_id: int | None = None,
        title: str = "",
        alt: str = "",
    ) -> int:
        """Register a local file as an attachment. Returns its id."""

    @abstractmethod
    def set_featured_media(self, post_id: int, attachment_id: int) -> None:
        """Set the post's primary media."""

    # ==================== Lifecycle ====================

    def flush(self) -> None:
        """Persist buffered writes. Called after every applied page."""
