"""Content store backed by a GitHub repository through the REST API."""

from __future__ import annotations

import base64
from collections.abc import Mapping
from datetime import datetime
import logging
from pathlib import PurePosixPath
from typing import Any
from urllib.parse import quote

import httpx

from notepress.models.note import Note, NoteSummary, NoteValidationError, parse_note, render_note
from notepress.services.store import (
    ContentStoreError,
    NoteNotFoundError,
    StoreUnavailableError,
    VersionConflictError,
    default_commit_message,
    filter_due,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"


class GitHubContentStore:
    """Treat the files under ``notes_directory`` of one branch as a versioned key/value store.

    The marker of each note is its Git blob SHA. Writes go through the contents
    API with the expected blob SHA, and GitHub rejects them with ``409`` when the
    file has moved on since it was read.
    """

    _DEFAULT_HEADERS: Mapping[str, str] = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
        "User-Agent": "notepress-scheduler/1.0",
    }
    _DEFAULT_TIMEOUT = 10.0

    def __init__(
        self,
        repository: str,
        *,
        token: str | None = None,
        branch: str = "main",
        notes_directory: str = "content/notes",
        api_url: str = DEFAULT_API_URL,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        owner, _, name = repository.partition("/")
        if not owner or not name:
            raise ValueError(f"GitHub repository must look like 'owner/name', got '{repository}'")
        self._repo_url = f"{api_url.rstrip('/')}/repos/{owner}/{name}"
        self._branch = branch
        self._notes_directory = PurePosixPath(notes_directory.strip("/"))
        self._timeout = float(timeout) if timeout is not None else self._DEFAULT_TIMEOUT
        headers = dict(self._DEFAULT_HEADERS)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._headers = headers
        self._client = client or httpx.Client(headers=headers, timeout=self._timeout)

    @property
    def branch(self) -> str:
        return self._branch

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # ContentStore contract
    # ------------------------------------------------------------------
    def list_all(self) -> list[NoteSummary]:
        """Walk the branch tree once and load every Markdown note under the notes directory."""

        try:
            tree = self._request("GET", f"/git/trees/{quote(self._branch, safe='')}", params={"recursive": "1"})
        except NoteNotFoundError as exc:
            raise StoreUnavailableError(f"GitHub branch '{self._branch}' could not be listed") from exc
        payload = tree.json()
        if payload.get("truncated"):
            LOGGER.warning(
                "GitHub tree listing was truncated; some notes may be missing",
                extra={"event": "store.tree_truncated", "branch": self._branch},
            )

        prefix = f"{self._notes_directory}/"
        summaries: list[NoteSummary] = []
        for entry in payload.get("tree", []):
            path = entry.get("path") or ""
            if entry.get("type") != "blob" or not path.startswith(prefix) or not path.endswith(".md"):
                continue
            sha = str(entry.get("sha") or "")
            slug = self._slug_for(path)
            try:
                blob = self._request("GET", f"/git/blobs/{sha}", slug=slug).json()
            except NoteNotFoundError as exc:
                raise StoreUnavailableError(f"GitHub blob {sha} for '{slug}' is missing", slug=slug) from exc
            try:
                note = parse_note(slug, _decode_content(blob), sha)
            except NoteValidationError:
                LOGGER.warning("Skipping unreadable note", extra={"event": "store.unreadable", "slug": slug})
                continue
            summaries.append(note.summary())
        return summaries

    def list_scheduled(self, now: datetime) -> list[NoteSummary]:
        return filter_due(self.list_all(), now)

    def read(self, slug: str) -> Note:
        response = self._request(
            "GET",
            f"/contents/{self._quoted_path(slug)}",
            params={"ref": self._branch},
            slug=slug,
        )
        payload = response.json()
        if not isinstance(payload, dict) or payload.get("type") != "file":
            raise NoteNotFoundError(f"Note '{slug}' is not a file", slug=slug)
        return parse_note(slug, _decode_content(payload), str(payload.get("sha") or ""))

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

        body: dict[str, Any] = {
            "message": message or default_commit_message(note),
            "content": base64.b64encode(render_note(note).encode("utf-8")).decode("ascii"),
            "branch": self._branch,
        }
        if expected_version is not None:
            body["sha"] = expected_version

        try:
            response = self._request("PUT", f"/contents/{self._quoted_path(slug)}", json=body, slug=slug)
        except NoteNotFoundError as exc:
            # Updating a file that vanished: the revision we built on no longer exists.
            raise VersionConflictError(
                f"Note '{slug}' was removed since revision {expected_version}",
                slug=slug,
                expected=expected_version,
            ) from exc

        new_sha = (response.json().get("content") or {}).get("sha")
        if not new_sha:
            raise StoreUnavailableError(f"GitHub did not return a revision for '{slug}'", slug=slug)
        return str(new_sha)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _path_for(self, slug: str) -> PurePosixPath:
        return self._notes_directory / f"{slug}.md"

    def _quoted_path(self, slug: str) -> str:
        return quote(str(self._path_for(slug)))

    def _slug_for(self, path: str) -> str:
        return str(PurePosixPath(path).relative_to(self._notes_directory).with_suffix(""))

    def _request(
        self,
        method: str,
        path: str,
        *,
        slug: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Issue one API call, translating transport and status failures into store errors."""

        url = f"{self._repo_url}{path}"
        try:
            response = self._client.request(method, url, headers=self._headers, timeout=self._timeout, **kwargs)
        except httpx.TimeoutException as exc:
            raise StoreUnavailableError(f"GitHub {method} {path} timed out", slug=slug) from exc
        except httpx.HTTPError as exc:
            raise StoreUnavailableError(f"GitHub {method} {path} failed: {exc}", slug=slug) from exc

        if response.is_success:
            return response
        raise _translate_error(method, path, response, slug=slug)


def _translate_error(method: str, path: str, response: httpx.Response, *, slug: str | None) -> ContentStoreError:
    status = response.status_code
    detail = _error_message(response)
    if status == 404:
        return NoteNotFoundError(f"GitHub {method} {path}: not found", slug=slug)
    if method == "PUT" and (status == 409 or (status == 422 and "sha" in detail.lower())):
        return VersionConflictError(f"GitHub rejected stale write for '{slug}': {detail}", slug=slug)
    return StoreUnavailableError(f"GitHub {method} {path} returned {status}: {detail}", slug=slug)


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip()
    if isinstance(payload, dict):
        return str(payload.get("message") or "")
    return str(payload)


def _decode_content(payload: Mapping[str, Any]) -> str:
    content = payload.get("content") or ""
    if payload.get("encoding", "base64") != "base64":
        return str(content)
    return base64.b64decode(str(content)).decode("utf-8")
