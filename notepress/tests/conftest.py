"""Shared fixtures and helpers for the test suite."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

import pytest

from notepress.models.note import Frontmatter, Note, NoteStatus
from notepress.services.store import InMemoryContentStore


NoteFactory = Callable[..., Note]


def _build_note(
    slug: str = "2024/03/hello",
    *,
    title: str = "Hello",
    status: NoteStatus = NoteStatus.SCHEDULED,
    scheduled_for: datetime | None = datetime(2024, 3, 1, tzinfo=timezone.utc),
    date: datetime = datetime(2024, 2, 20, 9, 30, tzinfo=timezone.utc),
    tags: list[str] | None = None,
    body: str = "Hello, world.\n",
    **extra: Any,
) -> Note:
    if status is not NoteStatus.SCHEDULED:
        scheduled_for = None
    stamp = bool(extra.pop("stamp_publish_time", False))
    return Note(
        slug=slug,
        frontmatter=Frontmatter(
            title=title,
            date=date,
            status=status,
            tags=list(tags or ["intro"]),
            scheduled_for=scheduled_for,
            stamp_publish_time=stamp,
            extra=dict(extra),
        ),
        body=body,
    )


@pytest.fixture()
def make_note() -> NoteFactory:
    """Return a factory producing valid notes (scheduled for 2024-03-01 by default)."""

    return _build_note


@pytest.fixture()
def store() -> InMemoryContentStore:
    return InMemoryContentStore()


@pytest.fixture()
def now() -> datetime:
    """The reference clock used across scheduler tests."""

    return datetime(2024, 3, 1, 0, 5, tzinfo=timezone.utc)
