"""Drains the asset queue: illustrations and narration for persisted segments.

A job failure is recorded as a terminal ``failed`` status on the segment and
the job row; it never propagates to the request that enqueued the job.
A job that crashes the worker, or whose worker disappears, is failed the same
way so a new explicit request can restart the asset.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storyloom.config import settings
from storyloom.db import session as db_session
from storyloom.db.models import Story, StorySegment
from storyloom.modules.assets import queue
from storyloom.modules.assets.illustration import build_image_request, compact_image_prompt
from storyloom.modules.assets.narration import compose_narration
from storyloom.modules.assets.providers.base import ImageProvider, SpeechProvider
from storyloom.modules.assets.providers.fake import FakeImageProvider, FakeSpeechProvider
from storyloom.modules.assets.providers.riva import RivaSpeechProvider
from storyloom.modules.assets.providers.sdxl import SDXLImageProvider
from storyloom.modules.assets.status import AssetKind, AssetStatus, InvalidAssetTransitionError, transition
from storyloom.modules.assets.storage import AssetStorage, get_asset_storage
from storyloom.utils.time import utc_now_naive

logger = logging.getLogger(__name__)


def build_image_provider() -> ImageProvider:
    if settings.image_provider == "fake":
        return FakeImageProvider()
    return SDXLImageProvider(settings.image_api_key, settings.image_base_url)


def build_speech_provider() -> SpeechProvider:
    if settings.tts_provider == "fake":
        return FakeSpeechProvider()
    return RivaSpeechProvider(settings.tts_api_key, settings.tts_base_url)


def refresh_story_audio_status(db: Session, story_id: uuid.UUID) -> str:
    """Derive the story-level narration status from its segments; caller owns the transaction."""
    statuses = list(db.execute(select(StorySegment.audio_status).where(StorySegment.story_id == story_id)).scalars())
    if any(status == AssetStatus.IN_PROGRESS.value for status in statuses):
        value = AssetStatus.IN_PROGRESS.value
    elif any(status == AssetStatus.FAILED.value for status in statuses):
        value = AssetStatus.FAILED.value
    elif statuses and all(status == AssetStatus.COMPLETED.value for status in statuses):
        value = AssetStatus.COMPLETED.value
    else:
        value = AssetStatus.NOT_STARTED.value
    story = db.get(Story, story_id, populate_existing=True)
    if story is not None and story.audio_generation_status != value:
        story.audio_generation_status = value
        story.updated_at = utc_now_naive()
    return value


def fail_asset(db: Session, segment_id: uuid.UUID, kind: AssetKind, reason: str) -> bool:
    """Move an in-progress asset to ``failed``; False when it already left ``in_progress``."""
    try:
        with db.begin():
            transition(db, segment_id, kind, AssetStatus.FAILED)
            if kind is AssetKind.AUDIO:
                segment = db.get(StorySegment, segment_id)
                if segment is not None:
                    refresh_story_audio_status(db, segment.story_id)
    except InvalidAssetTransitionError as exc:
        logger.info("segment %s %s left as is (%s): %s", segment_id, kind.value, reason, exc)
        return False
    logger.warning("segment %s %s failed: %s", segment_id, kind.value, reason)
    return True


def recover_stale_jobs(db: Session, stale_after_s: float | None = None) -> int:
    jobs = queue.reclaim_stale(db, stale_after_s)
    for job in jobs:
        fail_asset(db, job.segment_id, job.kind, f"job {job.id} went stale")
    return len(jobs)


def release_stalled_asset(
    db: Session,
    segment_id: uuid.UUID,
    kind: AssetKind,
    stale_after_s: float | None = None,
) -> bool:
    """Free an ``in_progress`` asset that no live job is working on.

    Returns False while a queued or recently active job still covers it.
    """
    recover_stale_jobs(db, stale_after_s)
    if queue.has_live_job(db, segment_id, kind, stale_after_s):
        return False
    fail_asset(db, segment_id, kind, "no live job")
    return True


class AssetWorker:
    def __init__(
        self,
        *,
        image_provider: ImageProvider | None = None,
        speech_provider: SpeechProvider | None = None,
        storage: AssetStorage | None = None,
        session_factory: Callable[[], Session] | None = None,
        image_timeout_s: float | None = None,
        tts_timeout_s: float | None = None,
    ):
        self.image_provider = image_provider or build_image_provider()
        self.speech_provider = speech_provider or build_speech_provider()
        self.storage = storage or get_asset_storage()
        self.session_factory = session_factory or db_session.new_session
        self.image_timeout_s = float(image_timeout_s or settings.image_timeout_s)
        self.tts_timeout_s = float(tts_timeout_s or settings.tts_timeout_s)

    def _run(self, coro):
        return asyncio.run(coro)

    def run_pending(self, limit: int | None = None) -> int:
        processed = 0
        db = self.session_factory()
        try:
            recover_stale_jobs(db)
            while limit is None or processed < limit:
                job = queue.claim_next(db)
                if job is None:
                    break
                try:
                    self.process_job(db, job)
                except Exception:  # noqa: BLE001
                    logger.exception("asset job %s crashed for segment %s", job.id, job.segment_id)
                    self._abandon(db, job)
                processed += 1
        finally:
            db.close()
        if processed:
            logger.info("asset worker processed %d job(s)", processed)
        return processed

    def process_job(self, db: Session, job: queue.QueuedJob) -> bool:
        restart = bool(job.payload.get("restart"))
        try:
            with db.begin():
                segment = db.get(StorySegment, job.segment_id, populate_existing=True)
                if segment is None:
                    raise InvalidAssetTransitionError(f"segment {job.segment_id} no longer exists")
                story = db.get(Story, segment.story_id, populate_existing=True)
                transition(db, segment.id, job.kind, AssetStatus.IN_PROGRESS, restart=restart)
                if job.kind is AssetKind.AUDIO:
                    refresh_story_audio_status(db, segment.story_id)
                story_id = segment.story_id
                content = segment.content
                image_prompt = segment.image_prompt
                genre = story.story_mode if story is not None else None
        except InvalidAssetTransitionError as exc:
            logger.warning("asset job %s skipped: %s", job.id, exc)
            queue.mark_failed(db, job.id, str(exc))
            return False

        try:
            if job.kind is AssetKind.IMAGE:
                prompt = image_prompt or compact_image_prompt(content, genre=genre)
                url = self._render_image(story_id, job.segment_id, prompt)
            else:
                url = self._narrate(story_id, job.segment_id, content, job.payload)
        except Exception as exc:  # noqa: BLE001
            logger.warning("asset job %s %s failed for segment %s: %s", job.id, job.kind.value, job.segment_id, exc)
            self._settle(db, job, AssetStatus.FAILED)
            queue.mark_failed(db, job.id, str(exc) or exc.__class__.__name__)
            return False

        self._settle(db, job, AssetStatus.COMPLETED, url=url)
        queue.mark_done(db, job.id)
        return True

    def _abandon(self, db: Session, job: queue.QueuedJob) -> None:
        if db.in_transaction():
            db.rollback()
        try:
            fail_asset(db, job.segment_id, job.kind, f"job {job.id} crashed")
            queue.mark_failed(db, job.id, "worker error while processing the job")
        except SQLAlchemyError:
            logger.exception("asset job %s left running; stale recovery will release it", job.id)

    def _settle(self, db: Session, job: queue.QueuedJob, target: AssetStatus, *, url: str | None = None) -> None:
        try:
            with db.begin():
                transition(db, job.segment_id, job.kind, target, url=url)
                if job.kind is AssetKind.AUDIO:
                    segment = db.get(StorySegment, job.segment_id)
                    if segment is not None:
                        refresh_story_audio_status(db, segment.story_id)
        except InvalidAssetTransitionError as exc:
            logger.warning("asset job %s result discarded: %s", job.id, exc)

    def _render_image(self, story_id: uuid.UUID, segment_id: uuid.UUID, prompt: str) -> str:
        rendered = self._run(self.image_provider.render(build_image_request(prompt), timeout_s=self.image_timeout_s))
        if rendered.url:
            return rendered.url
        if not rendered.data:
            raise ValueError("image provider returned no image")
        return self.storage.save_image(story_id, segment_id, rendered.data)

    def _narrate(self, story_id: uuid.UUID, segment_id: uuid.UUID, content: str, payload: dict) -> str:
        plan = compose_narration(
            content,
            character=payload.get("character"),
            story_type=payload.get("story_type"),
            emotion=payload.get("emotion"),
        )
        audio = self._run(self.speech_provider.synthesize(plan.request_payload(), timeout_s=self.tts_timeout_s))
        if not audio:
            raise ValueError("speech provider returned no audio")
        return self.storage.save_audio(story_id, segment_id, audio)


def drain_asset_jobs(limit: int | None = None) -> int:
    return AssetWorker().run_pending(limit)
