"""
ContentBridge record reconciliation.

Upserts one content record and everything hanging off it. A record
matches an existing destination post on (type, slug, exact UTC
timestamp); a match is updated in place, anything else is created.

Only the base upsert is mandatory. Author, taxonomy, meta, custom field
and featured media steps are each skipped on failure and reported as
warnings on the outcome.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from contentbridge.core.config import ImportConfig
from contentbridge.core.logging import get_logger
from contentbridge.core.models import ContentRecord, MediaKind
from contentbridge.destination.base import DestinationStore, PostFields
from contentbridge.sync.fields import FieldImporter
from contentbridge.sync.resolver import EntityResolver

logger = get_logger(__name__)


@dataclass
class ReconcileOutcome:
    """Result of reconciling one record."""

    record_id: int
    source_id: int
    created: bool
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "record_id": self.record_id,
            "source_id": self.source_id,
            "created": self.created,
            "warnings": list(self.warnings),
        }


class RecordReconciler:
    """Applies exported records to a destination store."""

    def __init__(
        self,
        destination: DestinationStore,
        resolver: EntityResolver,
        fields: FieldImporter | None = None,
        config: ImportConfig | None = None,
    ) -> None:
        self.destination = destination
        self.resolver = resolver
        self.fields = fields or FieldImporter(destination, resolver)
        self.config = config or ImportConfig()

    def reconcile(self, record: ContentRecord) -> ReconcileOutcome:
        """Upsert `record`. Raises if the base post cannot be written."""
        warnings: list[str] = []

        author_id = self._run_step(
            "author", record, warnings, lambda: self._resolve_author(record)
        )
        if author_id is None:
            author_id = self.config.default_author_id

        post_fields = self._post_fields(record, author_id)
        existing_id = self.destination.find_post(record.post_type, record.slug, record.date_gmt)
        if existing_id is not None:
            self.destination.update_post(existing_id, post_fields)
            post_id = existing_id
        else:
            post_id = self.destination.insert_post(post_fields)

        self._run_step(
            "taxonomies", record, warnings, lambda: self._apply_taxonomies(post_id, record, warnings)
        )
        self._run_step("meta", record, warnings, lambda: self._apply_meta(post_id, record))
        for name, custom_field in record.fields.items():
            self._run_step(
                f"field {name}",
                record,
                warnings,
                lambda f=custom_field: self.fields.import_field(post_id, f),
            )
        self._run_step("featured media", record, warnings, lambda: self._apply_featured(post_id, record))

        outcome = ReconcileOutcome(
            record_id=post_id,
            source_id=record.id,
            created=existing_id is None,
            warnings=warnings,
        )
        logger.debug(
            "Record reconciled",
            source_id=record.id,
            record_id=post_id,
            created=outcome.created,
            warnings=len(warnings),
        )
        return outcome

    def _run_step(
        self,
        step: str,
        record: ContentRecord,
        warnings: list[str],
        action: Callable[[], object],
    ) -> object:
        try:
            return action()
        except Exception as e:
            message = f"Record {record.id}: {step} skipped: {e}"
            warnings.append(message)
            logger.warning("Reconcile step failed", source_id=record.id, step=step, error=str(e))
            return None

    def _resolve_author(self, record: ContentRecord) -> int | None:
        if record.author is None:
            return None
        return self.resolver.resolve_author(record.author)

    def _post_fields(self, record: ContentRecord, author_id: int | None) -> PostFields:
        return PostFields(
            post_type=record.post_type,
            title=record.title,
            slug=record.slug,
            content=record.content,
            excerpt=record.excerpt,
            status=record.status,
            date=record.date,
            date_gmt=record.date_gmt,
            menu_order=record.menu_order,
            comments_open=record.comments_open,
            pings_open=record.pings_open,
            author_id=author_id,
        )

    def _apply_taxonomies(self, post_id: int, record: ContentRecord, warnings: list[str]) -> None:
        for taxonomy, terms in record.taxonomies.items():
            if not self.destination.taxonomy_exists(taxonomy):
                continue
            term_ids = []
            for term in terms:
                term_id = self.resolver.resolve_term(taxonomy, term)
                if term_id is None:
                    warnings.append(f"Record {record.id}: {taxonomy} term {term.slug or term.name!r} skipped")
                else:
                    term_ids.append(term_id)
            # Existing terms stay when nothing resolved
            if term_ids:
                self.destination.set_post_terms(post_id, taxonomy, term_ids)

    def _apply_meta(self, post_id: int, record: ContentRecord) -> None:
        reserved = set(self.config.reserved_meta_keys)
        for key, meta_value in record.meta.items():
            if key in reserved:
                continue
            self.destination.delete_post_meta(post_id, key)
            for entry in meta_value.entries():
                self.destination.add_post_meta(post_id, key, entry)

    def _apply_featured(self, post_id: int, record: ContentRecord) -> None:
        media = record.featured_media
        if media is None:
            return
        attachment_id = self.resolver.resolve_attachment(media, post_id, MediaKind.IMAGE)
        if attachment_id is None:
            raise ValueError(f"featured media could not be resolved: {media.url or media.id}")
        self.destination.set_featured_media(post_id, attachment_id)
