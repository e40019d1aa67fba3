"""Scan-and-publish orchestration for scheduled notes."""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Protocol

from notepress.models.note import NoteSummary, NoteValidationError
from notepress.models.publish import BatchResult, NoteOutcome, PublishOutcome, PublishResult
from notepress.services.store import ContentStore, ContentStoreError, NoteNotFoundError


logger = logging.getLogger(__name__)


class SupportsPublishing(Protocol):
    """Protocol describing the publish service interface."""

    def publish(self, slug: str, *, now: datetime | None = None) -> PublishResult:
        """Publish one note and report the outcome."""


@dataclass(slots=True)
class PublishScheduler:
    """Run one stateless publish cycle over every note that is due.

    ``now`` is always supplied by the caller, so a run is fully determined by
    the store contents and the given time. One note's failure is recorded in
    the batch result and never stops the remaining candidates.
    """

    store: ContentStore
    publisher: SupportsPublishing
    max_workers: int = 1

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")

    def find_due(self, now: datetime) -> list[NoteSummary]:
        """Return the candidates a run at ``now`` would process."""

        return self.store.list_scheduled(now)

    def run(self, now: datetime) -> BatchResult:
        """Publish every due note, returning one outcome per candidate."""

        candidates = self.find_due(now)
        logger.info(
            "Publish run started",
            extra={"event": "scheduler.start", "candidates": len(candidates), "now": now.isoformat()},
        )

        if self.max_workers == 1 or len(candidates) <= 1:
            results = [self._process(candidate, now) for candidate in candidates]
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="publish") as pool:
                results = list(pool.map(lambda candidate: self._process(candidate, now), candidates))

        batch = BatchResult(processed_count=len(candidates), results=results)
        logger.info(
            "Publish run finished",
            extra={
                "event": "scheduler.complete",
                "published": len(batch.published),
                "skipped": len(batch.skipped),
                "failed": len(batch.failed),
            },
        )
        return batch

    def _process(self, candidate: NoteSummary, now: datetime) -> NoteOutcome:
        slug = candidate.slug
        title = candidate.title
        try:
            result = self.publisher.publish(slug, now=now)
        except NoteNotFoundError:
            logger.info("Scheduled note disappeared before publishing", extra={"event": "scheduler.missing", "slug": slug})
            return NoteOutcome(slug=slug, title=title, outcome=PublishOutcome.SKIPPED, reason="note no longer exists")
        except (ContentStoreError, NoteValidationError) as exc:
            logger.error(
                "Publishing scheduled note failed",
                extra={"event": "scheduler.failed", "slug": slug, "error_type": type(exc).__name__},
            )
            return NoteOutcome(slug=slug, title=title, outcome=PublishOutcome.FAILED, error=str(exc) or type(exc).__name__)
        except Exception as exc:  # pragma: no cover - unexpected failure
            logger.exception("Unexpected error while publishing", extra={"event": "scheduler.error", "slug": slug})
            return NoteOutcome(slug=slug, title=title, outcome=PublishOutcome.FAILED, error=f"Unexpected error: {exc}")

        return NoteOutcome(slug=slug, title=title, outcome=result.outcome, reason=result.reason)
