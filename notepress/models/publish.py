"""Outcome types reported by the publish service and scheduler."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class PublishOutcome(str, Enum):
    """Per-note result of a publish attempt."""

    PUBLISHED = "Published"
    SKIPPED = "Skipped"
    FAILED = "Failed"


@dataclass(slots=True)
class PublishResult:
    """Outcome returned by :class:`~notepress.services.publisher.PublishService`."""

    slug: str
    outcome: PublishOutcome
    reason: str | None = None
    version_marker: str | None = None
    attempts: int = 0

    @property
    def published(self) -> bool:
        return self.outcome is PublishOutcome.PUBLISHED


@dataclass(slots=True)
class NoteOutcome:
    """One line of the batch audit trail."""

    slug: str
    title: str
    outcome: PublishOutcome
    reason: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "slug": self.slug,
            "title": self.title,
            "outcome": self.outcome.value,
        }
        if self.reason:
            payload["reason"] = self.reason
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass(slots=True)
class BatchResult:
    """Structured summary of one scheduler run."""

    processed_count: int
    results: list[NoteOutcome] = field(default_factory=list)

    @property
    def published(self) -> list[NoteOutcome]:
        return [item for item in self.results if item.outcome is PublishOutcome.PUBLISHED]

    @property
    def skipped(self) -> list[NoteOutcome]:
        return [item for item in self.results if item.outcome is PublishOutcome.SKIPPED]

    @property
    def failed(self) -> list[NoteOutcome]:
        return [item for item in self.results if item.outcome is PublishOutcome.FAILED]

    @property
    def has_failures(self) -> bool:
        """Return ``True`` when at least one candidate ended in ``Failed``."""

        return any(item.outcome is PublishOutcome.FAILED for item in self.results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processedCount": self.processed_count,
            "results": [item.to_dict() for item in self.results],
        }
