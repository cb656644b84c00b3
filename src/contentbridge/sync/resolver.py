"""
ContentBridge entity resolution.

Maps sub-records embedded in an exported record (author, taxonomy terms,
attachment references) to destination ids, creating them when absent.
Resolutions are cached for the lifetime of one resolver, which is one
import run. Nothing is locked across runs.
"""

from __future__ import annotations

import re
import secrets
import unicodedata
from typing import Any
from urllib.parse import urlsplit

from contentbridge.core.errors import DestinationError
from contentbridge.core.logging import get_logger
from contentbridge.core.models import AuthorRecord, MediaKind, MediaReference, TermRecord
from contentbridge.core.state import sanitize_key
from contentbridge.destination.base import DestinationStore, NewUser
from contentbridge.sync.media import MediaSideloader

logger = get_logger(__name__)

FALLBACK_LOGIN = "imported_author"
PASSWORD_BYTES = 18

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_LOGIN_STRIP_RE = re.compile(r"[^A-Za-z0-9 _.\-@]")
_SLUG_STRIP_RE = re.compile(r"[^a-z0-9]+")


def _ascii(value: str) -> str:
    return unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")


def sanitize_user(value: str) -> str:
    """Login handle with only [A-Za-z0-9 _.-@], whitespace collapsed."""
    cleaned = _LOGIN_STRIP_RE.sub("", _ascii(value or ""))
    return re.sub(r"\s+", " ", cleaned).strip()


def sanitize_title(value: str) -> str:
    """URL-safe slug."""
    return _SLUG_STRIP_RE.sub("-", _ascii(value or "").lower()).strip("-")


def is_email(value: str) -> bool:
    return bool(value) and _EMAIL_RE.match(value) is not None


def is_url(value: str) -> bool:
    parts = urlsplit(value.strip())
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class EntityResolver:
    """Resolves authors, terms and attachments against a destination store."""

    def __init__(
        self,
        destination: DestinationStore,
        sideloader: MediaSideloader | None = None,
    ) -> None:
        self.destination = destination
        self.sideloader = sideloader
        self._authors: dict[tuple[str, str], int] = {}
        self._terms: dict[tuple[str, str], int] = {}
        self._media: dict[tuple[str, MediaKind], int] = {}

    def clear_cache(self) -> None:
        self._authors.clear()
        self._terms.clear()
        self._media.clear()

    # ==================== Authors ====================

    def resolve_author(self, author: AuthorRecord) -> int | None:
        """Match by email, then login, then slug; create when nothing matches."""
        email = author.email.strip()
        if not is_email(email):
            email = ""
        lookups = [
            ("email", email.lower() if email else ""),
            ("login", sanitize_user(author.login)),
            ("slug", sanitize_title(author.nicename)),
        ]
        lookups = [(by, value) for by, value in lookups if value]

        for by, value in lookups:
            cached = self._authors.get((by, value))
            if cached is not None:
                return cached
            user_id = self.destination.find_user(by, value)
            if user_id is not None:
                self._remember_author(lookups, user_id)
                logger.debug("Author matched", by=by, user_id=user_id)
                return user_id

        user_id = self._create_author(author, email)
        if user_id is not None:
            self._remember_author(lookups, user_id)
        return user_id

    def _remember_author(self, lookups: list[tuple[str, str]], user_id: int) -> None:
        for key in lookups:
            self._authors.setdefault(key, user_id)

    def _create_author(self, author: AuthorRecord, email: str) -> int | None:
        if author.login:
            base_login = sanitize_user(author.login)
        elif email:
            base_login = sanitize_user(email.split("@", 1)[0])
        elif author.display_name:
            base_login = sanitize_user(author.display_name)
        else:
            base_login = FALLBACK_LOGIN
        base_login = base_login or FALLBACK_LOGIN

        login = base_login
        suffix = 1
        while self.destination.username_exists(login):
            login = f"{base_login}_{suffix}"
            suffix += 1

        role = sanitize_key(author.roles[0]) if author.roles and author.roles[0] else None
        new_user = NewUser(
            login=login,
            password=secrets.token_urlsafe(PASSWORD_BYTES),
            email=email,
            display_name=author.display_name or login,
            nicename=sanitize_title(author.nicename),
            url=author.url if is_url(author.url) else "",
            role=role or None,
            registered=author.registered or None,
        )

        try:
            user_id = self.destination.insert_user(new_user)
        except DestinationError as e:
            logger.warning("Author creation failed", login=login, error=e.message)
            return None

        for key, value in author.profile_fields.items():
            if not value:
                continue
            try:
                self.destination.update_user_meta(user_id, key, value.strip())
            except DestinationError as e:
                logger.warning("Author profile field skipped", user_id=user_id, field=key, error=e.message)

        logger.info("Author created", user_id=user_id, login=login, role=role)
        return user_id

    # ==================== Terms ====================

    def resolve_term(self, taxonomy: str, term: TermRecord) -> int | None:
        """Find a term by (taxonomy, slug), else create it."""
        slug = term.slug or sanitize_title(term.name)
        if not slug:
            return None
        key = (taxonomy, slug)

        cached = self._terms.get(key)
        if cached is not None:
            return cached

        term_id = self.destination.get_term_by_slug(taxonomy, slug)
        if term_id is None:
            try:
                term_id = self.destination.insert_term(
                    taxonomy, term.name or slug, slug, term.description
                )
                logger.debug("Term created", taxonomy=taxonomy, slug=slug, term_id=term_id)
            except DestinationError as e:
                # Another writer may have created it in the meantime.
                term_id = self.destination.get_term_by_slug(taxonomy, slug)
                if term_id is None:
                    logger.warning("Term creation failed", taxonomy=taxonomy, slug=slug, error=e.message)
                    return None

        self._terms[key] = term_id
        return term_id

    # ==================== Attachments ====================

    def resolve_attachment(
        self,
        value: Any,
        owner_id: int | None,
        kind: MediaKind = MediaKind.IMAGE,
    ) -> int | None:
        """Destination attachment id for a raw attachment value.

        Numeric values and structured references with an id are accepted
        only if that attachment exists. Structured references with a URL,
        and URL strings, are sideloaded. Anything else resolves to None.
        """
        if value is None or isinstance(value, bool) or value in ("", 0, [], {}):
            return None

        if isinstance(value, MediaReference):
            value = value.to_dict()

        if isinstance(value, (int, float)) or (isinstance(value, str) and value.strip().isdigit()):
            attachment_id = int(value)
            return attachment_id if self.destination.attachment_exists(attachment_id) else None

        if isinstance(value, dict):
            candidate = _as_int(value.get("ID")) or _as_int(value.get("id"))
            if candidate and self.destination.attachment_exists(candidate):
                return candidate
            url = value.get("url")
            if isinstance(url, str) and url:
                return self._sideload(url, owner_id, kind, str(value.get("alt") or ""))
            return None

        if isinstance(value, str) and is_url(value):
            return self._sideload(value.strip(), owner_id, kind, "")

        return None

    def _sideload(self, url: str, owner_id: int | None, kind: MediaKind, alt: str) -> int | None:
        cached = self._media.get((url, kind))
        if cached is not None and self.destination.attachment_exists(cached):
            return cached
        if self.sideloader is None:
            logger.warning("No sideloader configured, attachment skipped", url=url)
            return None
        attachment_id = self.sideloader.sideload(url, owner_id, alt=alt, kind=kind)
        if attachment_id is not None:
            self._media[(url, kind)] = attachment_id
        return attachment_id
