"""Content store contract, error taxonomy, and the in-memory implementation.

Every store is treated as a revision-addressed key/value map: each note file is
keyed by its slug and every write names the revision it was built on. A write
whose expected revision is stale is rejected with :class:`VersionConflictError`
instead of silently overwriting a concurrent change.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
import itertools
import logging
import threading
from typing import Protocol

from notepress.models.note import Note, NoteSummary, NoteValidationError, parse_note, render_note

logger = logging.getLogger(__name__)


class ContentStoreError(Exception):
    """Base class for failures reported by a content store."""

    def __init__(self, message: str, *, slug: str | None = None) -> None:
        super().__init__(message)
        self.slug = slug


class NoteNotFoundError(ContentStoreError):
    """The requested note does not exist (for example it was deleted after listing)."""


class VersionConflictError(ContentStoreError):
    """The store's current revision differs from the one the write was based on."""

    def __init__(
        self,
        message: str,
        *,
        slug: str | None = None,
        expected: str | None = None,
        actual: str | None = None,
    ) -> None:
        super().__init__(message, slug=slug)
        self.expected = expected
        self.actual = actual


class StoreUnavailableError(ContentStoreError):
    """Transient failure reaching the store, including timeouts."""


class ConflictExhaustedError(ContentStoreError):
    """Every commit attempt for a note hit a version conflict."""

    def __init__(self, message: str, *, slug: str | None = None, attempts: int = 0) -> None:
        super().__init__(message, slug=slug)
        self.attempts = attempts


class UnauthorizedError(Exception):
    """The trigger credential did not match the configured secret."""


class ContentStore(Protocol):
    """Read/list/commit contract shared by every store backend."""

    def list_all(self) -> list[NoteSummary]:
        """Return every note's slug, front matter, and current revision marker."""

    def list_scheduled(self, now: datetime) -> list[NoteSummary]:
        """Return notes whose status is scheduled and whose time is at or before ``now``."""

    def read(self, slug: str) -> Note:
        """Return the full note at its current revision or raise :class:`NoteNotFoundError`."""

    def commit(
        self,
        slug: str,
        note: Note,
        expected_version: str | None,
        *,
        message: str | None = None,
    ) -> str:
        """Write ``note`` as a new revision on top of ``expected_version`` and return the new marker."""


def filter_due(summaries: Iterable[NoteSummary], now: datetime) -> list[NoteSummary]:
    """Return the summaries that are scheduled for ``now`` or earlier."""

    return [summary for summary in summaries if summary.frontmatter.is_due(now)]


def default_commit_message(note: Note) -> str:
    return f"Update note: {note.title or note.slug}"


class InMemoryContentStore:
    """Map of ``slug -> (revision, markdown)`` honouring the commit contract.

    Content is kept in its rendered markdown form so reads exercise the same
    parser as the remote backends. Commits are compare-and-set operations,
    which is the atomicity the remote store guarantees per file.
    """

    def __init__(self, notes: Iterable[Note] = ()) -> None:
        self._files: dict[str, tuple[str, str]] = {}
        self._lock = threading.Lock()
        self._revisions = itertools.count(1)
        self.commit_messages: list[str] = []
        self.seed(notes)

    def seed(self, notes: Iterable[Note]) -> list[str]:
        """Unconditionally store ``notes``, returning their new revision markers."""

        return [self.put(note) for note in notes]

    def put(self, note: Note) -> str:
        """Write ``note`` regardless of its current revision (an admin overwrite)."""

        note.validate()
        with self._lock:
            return self._write(note.slug, render_note(note))

    def list_all(self) -> list[NoteSummary]:
        with self._lock:
            snapshot = dict(self._files)

        summaries: list[NoteSummary] = []
        for slug, (revision, text) in snapshot.items():
            try:
                note = parse_note(slug, text, revision)
            except NoteValidationError:
                logger.warning("Skipping unreadable note", extra={"event": "store.unreadable", "slug": slug})
                continue
            summaries.append(note.summary())
        return summaries

    def list_scheduled(self, now: datetime) -> list[NoteSummary]:
        return filter_due(self.list_all(), now)

    def read(self, slug: str) -> Note:
        with self._lock:
            entry = self._files.get(slug)
        if entry is None:
            raise NoteNotFoundError(f"Note '{slug}' not found", slug=slug)
        revision, text = entry
        return parse_note(slug, text, revision)

    def commit(
        self,
        slug: str,
        note: Note,
        expected_version: str | None,
        *,
        message: str | None = None,
    ) -> str:
        if note.slug != slug:
            raise NoteValidationError(f"Slug mismatch: '{note.slug}' written as '{slug}'")
        note.validate()
        payload = render_note(note)

        with self._lock:
            current = self._files.get(slug)
            actual = current[0] if current else None
            if actual != expected_version:
                raise VersionConflictError(
                    f"Note '{slug}' changed since revision {expected_version}",
                    slug=slug,
                    expected=expected_version,
                    actual=actual,
                )
            revision = self._write(slug, payload)
            self.commit_messages.append(message or default_commit_message(note))
        return revision

    def delete(self, slug: str) -> None:
        with self._lock:
            if self._files.pop(slug, None) is None:
                raise NoteNotFoundError(f"Note '{slug}' not found", slug=slug)

    def current_version(self, slug: str) -> str | None:
        with self._lock:
            entry = self._files.get(slug)
        return entry[0] if entry else None

    def raw(self, slug: str) -> str:
        """Return the stored markdown for ``slug``."""

        with self._lock:
            entry = self._files.get(slug)
        if entry is None:
            raise NoteNotFoundError(f"Note '{slug}' not found", slug=slug)
        return entry[1]

    def slugs(self) -> Sequence[str]:
        with self._lock:
            return sorted(self._files)

    def _write(self, slug: str, payload: str) -> str:
        revision = f"rev-{next(self._revisions)}"
        self._files[slug] = (revision, payload)
        return revision
