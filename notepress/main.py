"""FastAPI application exposing the scheduled-publish trigger."""

from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
import logging
import secrets

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from notepress.config import Settings, create_store
from notepress.models.publish import BatchResult
from notepress.services.publisher import PublishService
from notepress.services.scheduler import PublishScheduler
from notepress.services.store import ContentStore, StoreUnavailableError, UnauthorizedError

app = FastAPI(title="notepress scheduled publisher")

logger = logging.getLogger(__name__)


def _build_debug_detail(exc: Exception) -> dict[str, str]:
    """Return a serialisable mapping describing ``exc`` for debugging."""

    message = str(exc).strip()
    return {
        "type": type(exc).__name__,
        "message": message or "No exception message provided.",
    }


@lru_cache(maxsize=1)
def _load_settings() -> Settings:
    return Settings.from_env()


def get_settings() -> Settings:
    """FastAPI dependency returning settings read once from the environment."""

    try:
        return _load_settings()
    except ValueError as exc:
        logger.exception("Invalid publish configuration", extra={"event": "settings.invalid"})
        raise HTTPException(
            status_code=503,
            detail={"message": "Publish trigger misconfigured", "debug": _build_debug_detail(exc)},
        ) from exc


@lru_cache(maxsize=1)
def _cached_store() -> ContentStore:
    return create_store(_load_settings())


def get_store() -> ContentStore:
    """FastAPI dependency returning the shared content store."""

    try:
        return _cached_store()
    except ValueError as exc:
        logger.exception("Content store initialisation failed", extra={"event": "store.init"})
        raise HTTPException(
            status_code=503,
            detail={"message": "Content store not configured", "debug": _build_debug_detail(exc)},
        ) from exc


def get_scheduler(
    store: ContentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> PublishScheduler:
    publisher = PublishService(store=store, max_attempts=settings.max_publish_attempts)
    return PublishScheduler(store=store, publisher=publisher, max_workers=settings.publish_workers)


def check_trigger_secret(authorization: str | None, expected: str | None) -> None:
    """Raise :class:`UnauthorizedError` unless ``authorization`` carries the expected bearer secret."""

    if not expected:
        logger.warning("CRON_SECRET is not configured; trigger is unauthenticated", extra={"event": "cron.open"})
        return
    if not authorization or not secrets.compare_digest(authorization, f"Bearer {expected}"):
        raise UnauthorizedError("Trigger credential rejected")


def verify_cron_secret(request: Request, settings: Settings = Depends(get_settings)) -> None:
    """Reject the call before any store access when the shared secret does not match."""

    try:
        check_trigger_secret(request.headers.get("authorization"), settings.cron_secret)
    except UnauthorizedError as exc:
        logger.warning("Rejected publish trigger", extra={"event": "cron.unauthorized"})
        raise HTTPException(status_code=401, detail="Unauthorized") from exc


class NoteOutcomePayload(BaseModel):
    """Audit entry for one candidate processed by a publish run."""

    slug: str
    title: str
    outcome: str = Field(..., description="Published, Skipped, or Failed.")
    reason: str | None = None
    error: str | None = None


class PublishRunResponse(BaseModel):
    """Summary returned by the publish trigger."""

    model_config = ConfigDict(populate_by_name=True)

    processed_count: int = Field(..., alias="processedCount", description="Number of candidates found due.")
    results: list[NoteOutcomePayload] = Field(default_factory=list)

    @classmethod
    def from_batch(cls, batch: BatchResult) -> "PublishRunResponse":
        return cls(
            processed_count=batch.processed_count,
            results=[
                NoteOutcomePayload(
                    slug=item.slug,
                    title=item.title,
                    outcome=item.outcome.value,
                    reason=item.reason,
                    error=item.error,
                )
                for item in batch.results
            ],
        )


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.api_route(
    "/api/cron/publish",
    methods=["GET", "POST"],
    response_model=PublishRunResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(verify_cron_secret)],
)
def run_scheduled_publish(scheduler: PublishScheduler = Depends(get_scheduler)) -> PublishRunResponse:
    """Publish every note whose scheduled time has arrived."""

    now = datetime.now(timezone.utc)
    try:
        batch = scheduler.run(now)
    except StoreUnavailableError as exc:
        logger.exception("Publish run could not list notes", extra={"event": "cron.store_unavailable"})
        raise HTTPException(
            status_code=503,
            detail={"message": "Content store unavailable", "debug": _build_debug_detail(exc)},
        ) from exc

    logger.info(
        "Publish run completed",
        extra={
            "event": "cron.complete",
            "processed": batch.processed_count,
            "failed": len(batch.failed),
        },
    )
    return PublishRunResponse.from_batch(batch)
