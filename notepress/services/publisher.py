"""Publish service: move one note from ``scheduled`` to ``published``."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
import logging

from notepress.models.note import Note, NoteStatus
from notepress.models.publish import PublishOutcome, PublishResult
from notepress.services.store import ConflictExhaustedError, ContentStore, VersionConflictError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class PublishService:
    """Transition single notes to ``published`` using optimistic concurrency.

    The service holds no locks. Every write names the revision it was read at,
    and a conflict causes a fresh read and a re-check of the precondition
    before the next attempt. Store outages are never retried here; the next
    scheduler run picks the note up again.
    """

    store: ContentStore
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    clock: Callable[[], datetime] = field(default=_utc_now)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def publish(self, slug: str, *, now: datetime | None = None) -> PublishResult:
        """Publish ``slug`` if it is still scheduled and, when ``now`` is given, due.

        Raises :class:`~notepress.services.store.NoteNotFoundError` when the note
        is missing, :class:`~notepress.services.store.ConflictExhaustedError`
        when every attempt conflicts, and lets
        :class:`~notepress.services.store.StoreUnavailableError` propagate.
        """

        note = self.store.read(slug)
        attempts = 0

        while True:
            skip_reason = self._precondition_failure(note, now)
            if skip_reason is not None:
                logger.info(
                    "Skipping note that is not due for publishing",
                    extra={"event": "publish.skipped", "slug": slug, "reason": skip_reason},
                )
                return PublishResult(slug=slug, outcome=PublishOutcome.SKIPPED, reason=skip_reason, attempts=attempts)

            attempts += 1
            mutated = self._mutate(note, now)
            try:
                version = self.store.commit(
                    slug,
                    mutated,
                    note.version_marker,
                    message=f"Publish scheduled note: {note.title}",
                )
            except VersionConflictError:
                logger.warning(
                    "Concurrent write detected while publishing",
                    extra={"event": "publish.conflict", "slug": slug, "attempt": attempts},
                )
                if attempts >= self.max_attempts:
                    raise ConflictExhaustedError(
                        f"Gave up publishing '{slug}' after {attempts} conflicting attempts",
                        slug=slug,
                        attempts=attempts,
                    ) from None
                note = self.store.read(slug)
                continue

            logger.info(
                "Published scheduled note",
                extra={"event": "publish.published", "slug": slug, "attempts": attempts},
            )
            return PublishResult(
                slug=slug,
                outcome=PublishOutcome.PUBLISHED,
                version_marker=version,
                attempts=attempts,
            )

    @staticmethod
    def _precondition_failure(note: Note, now: datetime | None) -> str | None:
        status = note.frontmatter.status
        if status is not NoteStatus.SCHEDULED:
            label = status.value if status is not None else "unknown"
            return f"status is {label}"
        # A note rescheduled after listing must wait for its new time.
        if now is not None and not note.is_due(now):
            return "not yet due"
        return None

    def _mutate(self, note: Note, now: datetime | None) -> Note:
        stamped_at = None
        if note.frontmatter.stamp_publish_time:
            stamped_at = now or self.clock()
        return replace(note, frontmatter=note.frontmatter.published(stamped_at=stamped_at))
