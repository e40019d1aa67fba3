"""Content store backed by a local Git repository."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
import os
from pathlib import Path, PurePosixPath
import subprocess
import tempfile

from notepress.models.note import Note, NoteSummary, NoteValidationError, parse_note, render_note
from notepress.services.store import (
    NoteNotFoundError,
    StoreUnavailableError,
    VersionConflictError,
    default_commit_message,
    filter_due,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LocalGitContentStore:
    """Read and commit notes as Markdown files tracked in a Git working tree.

    The revision marker of a note is the blob id of its file at ``HEAD``, which
    is the same identifier the GitHub contents API uses for optimistic writes.
    """

    repo_path: Path
    notes_directory: PurePosixPath = field(default_factory=lambda: PurePosixPath("content/notes"))
    git_executable: str = "git"
    timeout: float = 10.0

    def list_all(self) -> list[NoteSummary]:
        listing = self._run_git("ls-tree", "-r", "HEAD", "--", f"{self.notes_directory}/", check=False)
        if listing.returncode != 0:
            # Fresh repository without commits has nothing to list.
            if "Not a valid object name" in listing.stderr or "bad revision" in listing.stderr:
                return []
            raise StoreUnavailableError(f"git ls-tree failed: {listing.stderr.strip()}")

        summaries: list[NoteSummary] = []
        for line in listing.stdout.splitlines():
            meta, _, path = line.partition("\t")
            parts = meta.split()
            if len(parts) != 3 or parts[1] != "blob" or not path.endswith(".md"):
                continue
            blob_id = parts[2]
            slug = self._slug_for(path)
            text = self._run_git("cat-file", "blob", blob_id).stdout
            try:
                note = parse_note(slug, text, blob_id)
            except NoteValidationError:
                logger.warning("Skipping unreadable note", extra={"event": "store.unreadable", "slug": slug})
                continue
            summaries.append(note.summary())
        return summaries

    def list_scheduled(self, now: datetime) -> list[NoteSummary]:
        return filter_due(self.list_all(), now)

    def read(self, slug: str) -> Note:
        blob_id = self._current_blob(slug)
        if blob_id is None:
            raise NoteNotFoundError(f"Note '{slug}' not found", slug=slug)
        text = self._run_git("cat-file", "blob", blob_id).stdout
        return parse_note(slug, text, blob_id)

    def commit(
        self,
        slug: str,
        note: Note,
        expected_version: str | None,
        *,
        message: str | None = None,
    ) -> str:
        """Commit ``note`` on top of ``expected_version`` without touching the index until it lands.

        The new commit is assembled from plumbing commands and the branch is
        moved with ``git update-ref <ref> <new> <old>``, which git applies only
        if the branch still points at the commit the revision check used.
        """

        if note.slug != slug:
            raise NoteValidationError(f"Slug mismatch: '{note.slug}' written as '{slug}'")
        note.validate()
        relative_path = str(self._path_for(slug))

        head = self._head_commit()
        actual = self._blob_at(head, relative_path) if head else None
        if actual != expected_version:
            raise VersionConflictError(
                f"Note '{slug}' changed since revision {expected_version}",
                slug=slug,
                expected=expected_version,
                actual=actual,
            )

        text = render_note(note)
        blob_id = self._run_git("hash-object", "-w", "--stdin", input=text).stdout.strip()
        commit_id = self._build_commit(head, relative_path, blob_id, message or default_commit_message(note))

        branch_ref = self._branch_ref()
        swap = self._run_git("update-ref", branch_ref, commit_id, head or "", check=False)
        if swap.returncode != 0:
            raise VersionConflictError(
                f"Branch moved while committing '{slug}': {swap.stderr.strip()}",
                slug=slug,
                expected=expected_version,
            )

        self._sync_checkout(relative_path, blob_id, text)
        return blob_id

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _path_for(self, slug: str) -> PurePosixPath:
        return self.notes_directory / f"{slug}.md"

    def _slug_for(self, path: str) -> str:
        relative = PurePosixPath(path).relative_to(self.notes_directory)
        return str(relative.with_suffix(""))

    def _current_blob(self, slug: str) -> str | None:
        return self._blob_at("HEAD", str(self._path_for(slug)))

    def _blob_at(self, revision: str, path: str) -> str | None:
        result = self._run_git("rev-parse", "--verify", "--quiet", f"{revision}:{path}", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def _head_commit(self) -> str | None:
        result = self._run_git("rev-parse", "--verify", "--quiet", "HEAD^{commit}", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def _branch_ref(self) -> str:
        result = self._run_git("symbolic-ref", "--quiet", "HEAD", check=False)
        # Detached HEAD: move HEAD itself.
        return result.stdout.strip() if result.returncode == 0 else "HEAD"

    def _build_commit(self, parent: str | None, path: str, blob_id: str, message: str) -> str:
        """Write a commit object replacing ``path`` with ``blob_id`` in ``parent``'s tree."""

        with tempfile.TemporaryDirectory(prefix="notepress-index-") as scratch:
            env = {**os.environ, "GIT_INDEX_FILE": str(Path(scratch) / "index")}
            if parent:
                self._run_git("read-tree", parent, env=env)
            self._run_git("update-index", "--add", "--cacheinfo", f"100644,{blob_id},{path}", env=env)
            tree_id = self._run_git("write-tree", env=env).stdout.strip()

        parent_args = ["-p", parent] if parent else []
        return self._run_git("commit-tree", tree_id, *parent_args, "-m", message).stdout.strip()

    def _sync_checkout(self, path: str, blob_id: str, text: str) -> None:
        """Bring the working tree and index in line with the commit that just landed."""

        destination = self.repo_path / path
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_text(text, encoding="utf-8")
            self._run_git("update-index", "--add", "--cacheinfo", f"100644,{blob_id},{path}")
        except (OSError, StoreUnavailableError):
            logger.warning(
                "Committed note but could not refresh the working tree",
                extra={"event": "store.checkout_stale", "path": path},
                exc_info=True,
            )

    def _run_git(
        self,
        *args: str,
        check: bool = True,
        input: str | None = None,
        env: dict[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Execute a Git command within the repository, mapping failures to store errors."""

        try:
            result = subprocess.run(
                [self.git_executable, *args],
                cwd=self.repo_path,
                text=True,
                check=False,
                capture_output=True,
                timeout=self.timeout,
                input=input,
                env=env,
            )
        except subprocess.TimeoutExpired as exc:
            raise StoreUnavailableError(f"git {args[0]} timed out after {self.timeout}s") from exc
        except OSError as exc:
            raise StoreUnavailableError(f"git {args[0]} could not be executed: {exc}") from exc

        if check and result.returncode != 0:
            command = " ".join(args)
            raise StoreUnavailableError(f"git {command} failed: {result.stderr.strip()}")
        return result
