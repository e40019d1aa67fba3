"""Centralised configuration loaded from environment variables."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - for static type checking only
    from notepress.services.store import ContentStore


STORE_BACKENDS = ("github", "git", "memory")


def _env_int(variable: str, default: int) -> int:
    value = (os.getenv(variable) or "").strip()
    if value.isdigit():
        return int(value)
    return default


def _env_float(variable: str, default: float) -> float:
    value = (os.getenv(variable) or "").strip()
    try:
        return float(value) if value else default
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the publish trigger and its content store."""

    cron_secret: str | None = None
    store_backend: str = "github"

    # --- GitHub ---
    github_token: str | None = None
    github_repository: str = ""
    github_branch: str = "main"
    github_api_url: str = "https://api.github.com"

    # --- Local git / shared ---
    notes_directory: str = "content/notes"
    repo_path: Path = Path(".")
    store_timeout: float = 10.0

    # --- Publishing ---
    publish_workers: int = 1
    max_publish_attempts: int = 3

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""

        backend = (os.getenv("NOTEPRESS_STORE_BACKEND") or "github").strip().lower()
        if backend not in STORE_BACKENDS:
            raise ValueError(f"NOTEPRESS_STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}; got '{backend}'")

        return cls(
            cron_secret=os.getenv("CRON_SECRET") or None,
            store_backend=backend,
            github_token=os.getenv("GITHUB_TOKEN") or None,
            github_repository=(os.getenv("NOTEPRESS_GITHUB_REPO") or "").strip(),
            github_branch=os.getenv("NOTEPRESS_GITHUB_BRANCH", "main"),
            github_api_url=os.getenv("NOTEPRESS_GITHUB_API_URL", "https://api.github.com"),
            notes_directory=os.getenv("NOTEPRESS_NOTES_DIR", "content/notes"),
            repo_path=Path(os.getenv("NOTEPRESS_REPO_PATH", ".")),
            store_timeout=_env_float("NOTEPRESS_STORE_TIMEOUT", 10.0),
            publish_workers=max(1, _env_int("NOTEPRESS_PUBLISH_WORKERS", 1)),
            max_publish_attempts=max(1, _env_int("NOTEPRESS_MAX_PUBLISH_ATTEMPTS", 3)),
            log_level=os.getenv("NOTEPRESS_LOG_LEVEL", "INFO").upper(),
        )


def create_store(settings: Settings) -> "ContentStore":
    """Instantiate the content store selected by ``settings.store_backend``."""

    backend = settings.store_backend
    if backend == "memory":
        from notepress.services.store import InMemoryContentStore

        return InMemoryContentStore()

    if backend == "git":
        from notepress.services.git_store import LocalGitContentStore

        return LocalGitContentStore(
            repo_path=settings.repo_path,
            notes_directory=PurePosixPath(settings.notes_directory.strip("/")),
            timeout=settings.store_timeout,
        )

    if backend == "github":
        if not settings.github_repository:
            raise ValueError("NOTEPRESS_GITHUB_REPO must be set to use the GitHub store")
        from notepress.services.github_store import GitHubContentStore

        return GitHubContentStore(
            settings.github_repository,
            token=settings.github_token,
            branch=settings.github_branch,
            notes_directory=settings.notes_directory,
            api_url=settings.github_api_url,
            timeout=settings.store_timeout,
        )

    raise ValueError(f"Unsupported store backend: {backend}")
