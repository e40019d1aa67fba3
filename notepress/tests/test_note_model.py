from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
import yaml

from notepress.models.note import (
    Frontmatter,
    NoteStatus,
    NoteValidationError,
    build_slug,
    format_datetime,
    parse_datetime,
    parse_note,
    render_note,
    slugify,
)


SAMPLE = """---
title: Hello World
subtitle: A first note
tags:
  - intro
  - meta
date: 2024-02-20T09:30:00Z
status: scheduled
scheduledFor: "2024-03-01T00:00:00Z"
coverImage: https://cdn.example.com/hello.png
---

# Hello

Body text.
"""


def test_slug_is_derived_from_date_and_title() -> None:
    assert slugify("Hello, World!") == "hello-world"
    assert slugify("???") == "note"
    assert build_slug("Hello, World!", date(2024, 3, 9)) == "2024/03/hello-world"


def test_parse_datetime_normalises_to_utc() -> None:
    assert parse_datetime("2024-03-01T00:00:00Z") == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert parse_datetime("2024-03-01T02:00:00+02:00") == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert parse_datetime(date(2024, 3, 1)) == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert parse_datetime(datetime(2024, 3, 1)) == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert parse_datetime("not a date") is None
    assert parse_datetime(None) is None
    assert format_datetime(datetime(2024, 3, 1, 12, 0, 5, 999, tzinfo=timezone.utc)) == "2024-03-01T12:00:05Z"


def test_parse_note_reads_front_matter_and_body() -> None:
    note = parse_note("2024/03/hello-world", SAMPLE, "sha-1")

    fm = note.frontmatter
    assert note.version_marker == "sha-1"
    assert note.year == "2024" and note.month == "03"
    assert fm.title == "Hello World"
    assert fm.subtitle == "A first note"
    assert fm.tags == ["intro", "meta"]
    assert fm.status is NoteStatus.SCHEDULED
    assert fm.scheduled_for == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert fm.date == datetime(2024, 2, 20, 9, 30, tzinfo=timezone.utc)
    assert fm.extra == {"coverImage": "https://cdn.example.com/hello.png"}
    assert note.body == "# Hello\n\nBody text.\n"
    note.validate()


def test_render_preserves_unknown_keys_and_body() -> None:
    note = parse_note("2024/03/hello-world", SAMPLE, "sha-1")
    rendered = render_note(note)

    front_raw, body = rendered.split("---\n", 2)[1:3]
    front = yaml.safe_load(front_raw)
    assert front["coverImage"] == "https://cdn.example.com/hello.png"
    assert front["scheduledFor"] == "2024-03-01T00:00:00Z"
    assert list(front)[:3] == ["title", "subtitle", "tags"]
    assert body == "\n# Hello\n\nBody text.\n"

    reparsed = parse_note(note.slug, rendered)
    assert reparsed.frontmatter == note.frontmatter
    assert reparsed.body == note.body


def test_published_transition_clears_schedule_but_keeps_date() -> None:
    fm = parse_note("2024/03/hello-world", SAMPLE).frontmatter
    published = fm.published()

    assert published.status is NoteStatus.PUBLISHED
    assert published.scheduled_for is None
    assert published.date == fm.date
    assert fm.status is NoteStatus.SCHEDULED
    published.validate()


def test_published_transition_can_stamp_publish_time() -> None:
    fm = parse_note("2024/03/hello-world", SAMPLE).frontmatter
    fm.stamp_publish_time = True
    stamped_at = datetime(2024, 3, 1, 0, 5, tzinfo=timezone.utc)

    published = fm.published(stamped_at=stamped_at)

    assert published.date == stamped_at
    assert published.stamp_publish_time is False
    assert "stampPublishTime" not in published.to_mapping()


@pytest.mark.parametrize(
    ("changes", "message"),
    [
        ({"title": ""}, "title"),
        ({"date": None}, "date"),
        ({"status": None}, "status"),
        ({"scheduled_for": None}, "scheduledFor"),
        ({"status": NoteStatus.PUBLISHED}, "scheduledFor"),
        ({"status": NoteStatus.DRAFT}, "scheduledFor"),
    ],
)
def test_frontmatter_validation_rules(changes: dict[str, object], message: str) -> None:
    fm = Frontmatter(
        title="Hello",
        date=datetime(2024, 2, 20, tzinfo=timezone.utc),
        status=NoteStatus.SCHEDULED,
        scheduled_for=datetime(2024, 3, 1, tzinfo=timezone.utc),
    )
    for key, value in changes.items():
        setattr(fm, key, value)

    with pytest.raises(NoteValidationError, match=message):
        fm.validate()


@pytest.mark.parametrize("slug", ["hello", "2024/13/hello", "2024/03/Hello", "2024/03/../x", "24/03/hello"])
def test_invalid_slugs_are_rejected(make_note, slug: str) -> None:
    with pytest.raises(NoteValidationError, match="slug"):
        make_note(slug).validate()


def test_unknown_status_parses_leniently_but_fails_validation() -> None:
    text = SAMPLE.replace("status: scheduled", "status: archived")
    note = parse_note("2024/03/hello-world", text)

    assert note.frontmatter.status is None
    assert not note.is_due(datetime(2030, 1, 1, tzinfo=timezone.utc))
    with pytest.raises(NoteValidationError):
        note.validate()


@pytest.mark.parametrize(
    "text",
    [
        "no front matter here",
        "---\ntitle: [unclosed\n---\nbody",
        "---\n- just\n- a list\n---\nbody",
    ],
)
def test_parse_rejects_malformed_documents(text: str) -> None:
    with pytest.raises(NoteValidationError):
        parse_note("2024/03/broken", text)


def test_is_due_compares_against_supplied_time() -> None:
    fm = parse_note("2024/03/hello-world", SAMPLE).frontmatter

    assert fm.is_due(datetime(2024, 3, 1, tzinfo=timezone.utc))
    assert fm.is_due(datetime(2024, 3, 2, tzinfo=timezone.utc))
    assert not fm.is_due(datetime(2024, 2, 29, 23, 59, 59, tzinfo=timezone.utc))


def test_stamping_treats_naive_time_as_utc() -> None:
    fm = parse_note("2024/03/hello-world", SAMPLE).frontmatter
    fm.stamp_publish_time = True

    published = fm.published(stamped_at=datetime(2024, 3, 1, 0, 5))

    assert published.date == datetime(2024, 3, 1, 0, 5, tzinfo=timezone.utc)
    assert published.to_mapping()["date"] == "2024-03-01T00:05:00Z"


def test_scalar_front_matter_values_are_kept_as_text() -> None:
    text = SAMPLE.replace("title: Hello World", "title: 1984").replace("  - meta", "  - 2024\n  - {nested: true}")
    fm = parse_note("2024/03/hello-world", text).frontmatter

    assert fm.title == "1984"
    assert fm.tags == ["intro", "2024"]
    fm.validate()


def test_untouched_fields_render_as_authored() -> None:
    text = SAMPLE.replace("date: 2024-02-20T09:30:00Z", "date: 2024-02-20")
    note = parse_note("2024/03/hello-world", text)

    front = yaml.safe_load(render_note(note).split("---\n", 2)[1])

    assert front["date"] == date(2024, 2, 20)
    assert front["tags"] == ["intro", "meta"]
