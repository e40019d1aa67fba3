from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from notepress.models.note import NoteStatus, NoteValidationError
from notepress.services.store import (
    InMemoryContentStore,
    NoteNotFoundError,
    VersionConflictError,
    filter_due,
)


def test_read_returns_current_revision(store: InMemoryContentStore, make_note) -> None:
    (revision,) = store.seed([make_note()])

    note = store.read("2024/03/hello")

    assert note.version_marker == revision
    assert note.frontmatter.status is NoteStatus.SCHEDULED
    assert note.body == "Hello, world.\n"


def test_read_missing_note_raises(store: InMemoryContentStore) -> None:
    with pytest.raises(NoteNotFoundError):
        store.read("2024/03/missing")


def test_commit_requires_matching_revision(store: InMemoryContentStore, make_note) -> None:
    store.seed([make_note()])
    first = store.read("2024/03/hello")

    # An admin edit lands between our read and our write.
    store.put(replace(make_note(), body="Edited by admin.\n"))

    mutated = replace(first, frontmatter=first.frontmatter.published())
    with pytest.raises(VersionConflictError) as excinfo:
        store.commit(first.slug, mutated, first.version_marker)

    assert excinfo.value.expected == first.version_marker
    assert excinfo.value.actual == store.current_version("2024/03/hello")
    assert store.read("2024/03/hello").body == "Edited by admin.\n"


def test_commit_returns_new_revision(store: InMemoryContentStore, make_note) -> None:
    store.seed([make_note()])
    note = store.read("2024/03/hello")

    new_revision = store.commit(
        note.slug,
        replace(note, frontmatter=note.frontmatter.published()),
        note.version_marker,
        message="Publish scheduled note: Hello",
    )

    assert new_revision != note.version_marker
    assert store.current_version(note.slug) == new_revision
    assert store.commit_messages == ["Publish scheduled note: Hello"]
    assert "status: published" in store.raw(note.slug)


def test_commit_without_expected_revision_only_creates(store: InMemoryContentStore, make_note) -> None:
    created = store.commit("2024/04/new", make_note("2024/04/new"), None)
    assert store.current_version("2024/04/new") == created

    with pytest.raises(VersionConflictError):
        store.commit("2024/04/new", make_note("2024/04/new"), None)


def test_commit_validates_before_writing(store: InMemoryContentStore, make_note) -> None:
    store.seed([make_note()])
    note = store.read("2024/03/hello")
    broken = replace(note, frontmatter=replace(note.frontmatter, scheduled_for=None))

    with pytest.raises(NoteValidationError):
        store.commit(note.slug, broken, note.version_marker)
    with pytest.raises(NoteValidationError):
        store.commit("2024/03/other", note, note.version_marker)

    assert store.current_version(note.slug) == note.version_marker


def test_list_scheduled_filters_full_listing(store: InMemoryContentStore, make_note, now: datetime) -> None:
    store.seed(
        [
            make_note("2024/03/due"),
            make_note("2024/03/exactly-now", scheduled_for=now),
            make_note("2024/03/future", scheduled_for=datetime(2024, 3, 2, tzinfo=timezone.utc)),
            make_note("2024/02/draft", status=NoteStatus.DRAFT),
            make_note("2024/01/live", status=NoteStatus.PUBLISHED),
        ]
    )

    everything = store.list_all()
    due = store.list_scheduled(now)

    assert len(everything) == 5
    assert sorted(summary.slug for summary in due) == ["2024/03/due", "2024/03/exactly-now"]
    assert all(summary.version_marker for summary in due)
    assert sorted(summary.slug for summary in filter_due(everything, now)) == sorted(summary.slug for summary in due)


def test_listing_skips_unreadable_files(store: InMemoryContentStore, make_note) -> None:
    store.seed([make_note()])
    store._files["2024/03/broken"] = ("rev-x", "no front matter")

    assert [summary.slug for summary in store.list_all()] == ["2024/03/hello"]


def test_delete_removes_note(store: InMemoryContentStore, make_note) -> None:
    store.seed([make_note()])
    store.delete("2024/03/hello")

    assert store.slugs() == []
    with pytest.raises(NoteNotFoundError):
        store.delete("2024/03/hello")
