"""Domain model for notes stored as markdown files with YAML front matter."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from enum import Enum
import re
from typing import Any

import yaml


_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")
_NOTE_SLUG_PATTERN = re.compile(r"^(?P<year>\d{4})/(?P<month>\d{2})/(?P<name>[a-z0-9]+(?:-[a-z0-9]+)*)$")
_FRONT_MATTER_PATTERN = re.compile(r"\A---[ \t]*\r?\n(?P<front>.*?)\r?\n---[ \t]*(?:\r?\n|\Z)(?P<body>.*)\Z", re.DOTALL)

# Front matter keys managed by :class:`Frontmatter`; everything else is carried through ``extra``.
_FIELD_KEYS = (
    ("title", "title"),
    ("subtitle", "subtitle"),
    ("tags", "tags"),
    ("date", "date"),
    ("status", "status"),
    ("scheduled_for", "scheduledFor"),
    ("stamp_publish_time", "stampPublishTime"),
)
_KNOWN_KEYS = tuple(key for _, key in _FIELD_KEYS)


class NoteValidationError(ValueError):
    """Raised when a note violates the front matter or slug rules."""


class NoteStatus(str, Enum):
    """Lifecycle states of a note: ``draft -> scheduled -> published``."""

    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PUBLISHED = "published"


def slugify(value: str) -> str:
    """Return a URL friendly slug component for ``value``."""

    normalised = value.lower()
    normalised = _SLUG_PATTERN.sub("-", normalised)
    normalised = normalised.strip("-")
    return normalised or "note"


def build_slug(title: str, when: datetime | date) -> str:
    """Derive the permanent ``YYYY/MM/title`` slug of a new note."""

    return f"{when.year:04d}/{when.month:02d}/{slugify(title)}"


def parse_datetime(value: Any) -> datetime | None:
    """Coerce a string/date/datetime value into a timezone-aware UTC datetime."""

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_datetime(value: datetime) -> str:
    """Render ``value`` as a second-precision UTC ISO-8601 string with a ``Z`` suffix."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _scalar_text(value: Any) -> str | None:
    """Return a YAML scalar as stripped text, or ``None`` for collections."""

    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (bool, int, float, date)):
        return str(value)
    return None


def _listify_strings(value: Any) -> list[str]:
    """Normalise a value into a list of non-empty strings."""

    if isinstance(value, (list, tuple)):
        items = [_scalar_text(item) for item in value]
        return [item for item in items if item]

    text = _scalar_text(value)
    return [text] if text else []


def _optional_str(value: Any) -> str | None:
    return _scalar_text(value) if value is not None else None


def _text_value(value: Any) -> str:
    return _scalar_text(value) or ""


def _parse_status(value: Any) -> NoteStatus | None:
    if isinstance(value, NoteStatus):
        return value
    if isinstance(value, str):
        try:
            return NoteStatus(value.strip().lower())
        except ValueError:
            return None
    return None


@dataclass(slots=True)
class Frontmatter:
    """Structured metadata block at the top of every note file."""

    title: str
    date: datetime | None
    status: NoteStatus | None = NoteStatus.DRAFT
    subtitle: str | None = None
    tags: list[str] = field(default_factory=list)
    scheduled_for: datetime | None = None
    stamp_publish_time: bool = False
    extra: dict[str, Any] = field(default_factory=dict)
    # Mapping as authored in the file; untouched fields are written back from it verbatim.
    source: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "Frontmatter":
        """Build front matter from parsed YAML without enforcing invariants."""

        extra = {key: value for key, value in data.items() if key not in _KNOWN_KEYS}
        return cls(
            title=_text_value(data.get("title")),
            subtitle=_optional_str(data.get("subtitle")),
            tags=_listify_strings(data.get("tags")),
            date=parse_datetime(data.get("date")),
            status=_parse_status(data.get("status")),
            scheduled_for=parse_datetime(data.get("scheduledFor")),
            stamp_publish_time=data.get("stampPublishTime") is True,
            extra=extra,
            source=dict(data),
        )

    def to_mapping(self) -> dict[str, Any]:
        """Return the YAML mapping, keeping authored values for fields that did not change.

        A field is re-serialised only when its value differs from what the
        authored mapping parses to, so publishing rewrites nothing but the keys
        it transitions.
        """

        authored = Frontmatter.from_mapping(self.source)
        payload = dict(self.source)
        for attribute, key in _FIELD_KEYS:
            if key in self.source and getattr(authored, attribute) == getattr(self, attribute):
                continue
            value = self._serialise(attribute)
            if value is None:
                payload.pop(key, None)
            else:
                payload[key] = value

        for key in list(payload):
            if key not in _KNOWN_KEYS and key not in self.extra:
                del payload[key]
        payload.update(self.extra)
        return payload

    def _serialise(self, attribute: str) -> Any:
        if attribute == "tags":
            return list(self.tags)
        if attribute in ("date", "scheduled_for"):
            value = getattr(self, attribute)
            return format_datetime(value) if value is not None else None
        if attribute == "status":
            return self.status.value if self.status is not None else None
        if attribute == "stamp_publish_time":
            return True if self.stamp_publish_time else None
        return getattr(self, attribute)

    def validate(self) -> None:
        """Raise :class:`NoteValidationError` when an invariant does not hold."""

        if not self.title:
            raise NoteValidationError("Front matter 'title' must not be empty")
        if self.date is None:
            raise NoteValidationError("Front matter 'date' must be a valid timestamp")
        if self.status is None:
            raise NoteValidationError("Front matter 'status' must be one of draft, scheduled, published")
        if self.status is NoteStatus.SCHEDULED and self.scheduled_for is None:
            raise NoteValidationError("Scheduled notes require 'scheduledFor'")
        if self.status is not NoteStatus.SCHEDULED and self.scheduled_for is not None:
            raise NoteValidationError(f"'scheduledFor' is only allowed on scheduled notes, not {self.status.value}")

    def is_due(self, now: datetime) -> bool:
        """Return ``True`` when the note is scheduled and its time has arrived."""

        return (
            self.status is NoteStatus.SCHEDULED
            and self.scheduled_for is not None
            and self.scheduled_for <= now
        )

    def published(self, *, stamped_at: datetime | None = None) -> "Frontmatter":
        """Return a copy transitioned to ``published`` with the schedule cleared."""

        updated = replace(
            self,
            status=NoteStatus.PUBLISHED,
            scheduled_for=None,
            tags=list(self.tags),
            extra=dict(self.extra),
            source=dict(self.source),
        )
        if stamped_at is not None:
            updated.date = parse_datetime(stamped_at)
            updated.stamp_publish_time = False
        return updated


def validate_slug(slug: str) -> re.Match[str]:
    match = _NOTE_SLUG_PATTERN.match(slug or "")
    if match is None or not 1 <= int(match.group("month")) <= 12:
        raise NoteValidationError(f"Invalid note slug '{slug}'; expected YYYY/MM/kebab-title")
    return match


@dataclass(slots=True)
class NoteSummary:
    """Listing entry: a note's metadata and revision without its body."""

    slug: str
    frontmatter: Frontmatter
    version_marker: str

    @property
    def title(self) -> str:
        return self.frontmatter.title


@dataclass(slots=True)
class Note:
    """A single content item read from the store at ``version_marker``."""

    slug: str
    frontmatter: Frontmatter
    body: str = ""
    version_marker: str | None = None

    @property
    def title(self) -> str:
        return self.frontmatter.title

    @property
    def year(self) -> str:
        return validate_slug(self.slug).group("year")

    @property
    def month(self) -> str:
        return validate_slug(self.slug).group("month")

    @property
    def status(self) -> NoteStatus | None:
        return self.frontmatter.status

    def is_due(self, now: datetime) -> bool:
        return self.frontmatter.is_due(now)

    def validate(self) -> None:
        validate_slug(self.slug)
        self.frontmatter.validate()

    def summary(self) -> NoteSummary:
        return NoteSummary(slug=self.slug, frontmatter=self.frontmatter, version_marker=self.version_marker or "")


def parse_note(slug: str, text: str, version_marker: str | None = None) -> Note:
    """Parse a markdown document with a ``---`` fenced YAML header."""

    match = _FRONT_MATTER_PATTERN.match(text.lstrip("\ufeff"))
    if match is None:
        raise NoteValidationError(f"Note '{slug}' has no front matter block")

    try:
        data = yaml.safe_load(match.group("front")) or {}
    except yaml.YAMLError as exc:
        raise NoteValidationError(f"Note '{slug}' has malformed front matter: {exc}") from exc
    if not isinstance(data, dict):
        raise NoteValidationError(f"Note '{slug}' front matter must be a mapping")

    body = match.group("body")
    if body.startswith("\r\n"):
        body = body[2:]
    elif body.startswith("\n"):
        body = body[1:]

    return Note(
        slug=slug,
        frontmatter=Frontmatter.from_mapping(data),
        body=body,
        version_marker=version_marker,
    )


def render_note(note: Note) -> str:
    """Serialise ``note`` back into its markdown file representation."""

    front_matter = yaml.safe_dump(note.frontmatter.to_mapping(), allow_unicode=True, sort_keys=False).strip()
    return f"---\n{front_matter}\n---\n\n{note.body}"
