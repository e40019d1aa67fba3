"""Run one scheduled-publish cycle from the command line (cron or CI jobs)."""

from __future__ import annotations

import argparse
import json
import logging
import os
from dataclasses import replace
from datetime import datetime, timezone
from typing import Sequence

from notepress.config import STORE_BACKENDS, Settings, create_store
from notepress.models.note import format_datetime, parse_datetime
from notepress.services.publisher import PublishService
from notepress.services.scheduler import PublishScheduler
from notepress.services.store import ContentStore, StoreUnavailableError

LOGGER = logging.getLogger("notepress.publish")


def _configure_logging() -> None:
    """Configure root logging based on ``NOTEPRESS_LOG_LEVEL``."""
    level_name = os.getenv("NOTEPRESS_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Publish every scheduled note that is due")
    parser.add_argument(
        "--now",
        default=os.getenv("NOTEPRESS_PUBLISH_NOW"),
        help="ISO-8601 timestamp to evaluate schedules against (default: current UTC time)",
    )
    parser.add_argument(
        "--backend",
        choices=STORE_BACKENDS,
        default=None,
        help="Content store backend (default: NOTEPRESS_STORE_BACKEND or github)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of notes published in parallel (default: NOTEPRESS_PUBLISH_WORKERS or 1)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the notes that are due without publishing them",
    )
    return parser.parse_args(argv)


def _parse_now(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    parsed = parse_datetime(value)
    if parsed is None:  # pragma: no cover - user configuration
        raise SystemExit(f"Invalid ISO-8601 timestamp: {value}")
    return parsed


def _build_scheduler(settings: Settings, store: ContentStore) -> PublishScheduler:
    publisher = PublishService(store=store, max_attempts=settings.max_publish_attempts)
    return PublishScheduler(store=store, publisher=publisher, max_workers=settings.publish_workers)


def main(argv: Sequence[str] | None = None) -> int:
    _configure_logging()
    args = _parse_args(argv)
    now = _parse_now(args.now)

    try:
        settings = Settings.from_env()
    except ValueError:
        LOGGER.exception("Invalid publish configuration")
        return 1
    if args.backend:
        settings = replace(settings, store_backend=args.backend)
    if args.workers is not None:
        settings = replace(settings, publish_workers=max(1, args.workers))

    LOGGER.info(
        "PUBLISH_RUN_START now=%s backend=%s workers=%s dry_run=%s",
        format_datetime(now),
        settings.store_backend,
        settings.publish_workers,
        args.dry_run,
    )

    try:
        store = create_store(settings)
    except ValueError:
        LOGGER.exception("Failed to initialise content store")
        return 1

    scheduler = _build_scheduler(settings, store)

    if args.dry_run:
        try:
            due = scheduler.find_due(now)
        except StoreUnavailableError:
            LOGGER.exception("Content store unavailable while listing scheduled notes")
            return 1
        payload = {
            "dryRun": True,
            "processedCount": len(due),
            "due": [
                {
                    "slug": summary.slug,
                    "title": summary.title,
                    "scheduledFor": format_datetime(summary.frontmatter.scheduled_for)
                    if summary.frontmatter.scheduled_for
                    else None,
                }
                for summary in due
            ],
        }
        print(json.dumps(payload, ensure_ascii=False))
        LOGGER.info("PUBLISH_RUN_COMPLETE dry_run=True due=%s", len(due))
        return 0

    try:
        batch = scheduler.run(now)
    except StoreUnavailableError:
        LOGGER.exception("Content store unavailable while listing scheduled notes")
        return 1

    for item in batch.results:
        if item.error:
            LOGGER.error("PUBLISH_NOTE_FAILED slug=%s error=%s", item.slug, item.error)
        elif item.reason:
            LOGGER.info("PUBLISH_NOTE_%s slug=%s reason=%s", item.outcome.value.upper(), item.slug, item.reason)
        else:
            LOGGER.info("PUBLISH_NOTE_%s slug=%s", item.outcome.value.upper(), item.slug)

    print(json.dumps(batch.to_dict(), ensure_ascii=False))

    LOGGER.info(
        "PUBLISH_RUN_COMPLETE processed=%s published=%s skipped=%s failed=%s",
        batch.processed_count,
        len(batch.published),
        len(batch.skipped),
        len(batch.failed),
    )
    return 1 if batch.has_failures else 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
