from __future__ import annotations

import asyncio
import base64
import logging

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from storyloom.config import settings
from storyloom.db.session import get_db
from storyloom.errors import ResourceConflictError, ResourceNotFoundError
from storyloom.modules.access.deps import get_current_user, require_admin, require_capabilities
from storyloom.modules.assets import queue
from storyloom.modules.assets.narration import (
    AUDIO_FORMAT,
    SAMPLE_RATE,
    browser_fallback,
    compose_narration,
)
from storyloom.modules.assets.schemas import (
    AssetJobsQueued,
    DrainRequest,
    DrainResponse,
    NarrationRequest,
    RegenerateImageRequest,
    StoryAudioRequest,
)
from storyloom.modules.assets.status import AssetKind, AssetStatus
from storyloom.modules.assets.worker import build_speech_provider, drain_asset_jobs, release_stalled_asset
from storyloom.modules.stories import store
from storyloom.modules.stories.errors import StoryAccessDeniedError, StoryNotFoundError, as_app_error

logger = logging.getLogger(__name__)

router = APIRouter(tags=["assets"])


def schedule_drain(background_tasks: BackgroundTasks) -> None:
    if settings.asset_jobs_after_response:
        background_tasks.add_task(drain_asset_jobs)


def _narrate(payload: NarrationRequest, user: dict) -> dict:
    plan = compose_narration(
        payload.text,
        character=payload.character,
        story_type=payload.story_type,
        emotion=payload.emotion,
        ssml_enhanced=payload.ssml_enhanced,
    )
    provider = build_speech_provider()
    try:
        audio = asyncio.run(provider.synthesize(plan.request_payload(), timeout_s=settings.tts_timeout_s))
    except Exception as exc:  # noqa: BLE001
        logger.warning("speech provider %s unavailable for user=%s: %s", provider.name, user["id"], exc)
        return browser_fallback(plan, "Speech service unavailable")

    return {
        "success": True,
        "audio": {
            "data": base64.b64encode(audio).decode("ascii"),
            "format": AUDIO_FORMAT,
            "sampleRate": SAMPLE_RATE,
            "duration": plan.estimated_duration_s,
        },
        "metadata": {
            "character": plan.character,
            "characterDescription": plan.voice.description,
            "storyType": plan.story_type,
            "emotion": plan.emotion,
            "ssmlEnhanced": plan.ssml_enhanced,
            "voice": plan.voice.voice,
            "textLength": len(plan.text),
        },
        "message": "Audio generated successfully",
    }


@router.post("/generate-tts-audio", dependencies=[Depends(require_capabilities("identity", "speech"))])
def generate_tts_audio(payload: NarrationRequest, user: dict = Depends(get_current_user)) -> dict:
    return _narrate(payload, user)


@router.post("/generate-tts", dependencies=[Depends(require_capabilities("identity", "speech"))])
def generate_tts(payload: NarrationRequest, user: dict = Depends(get_current_user)) -> dict:
    return _narrate(payload, user)


@router.post(
    "/regenerate-image",
    response_model=AssetJobsQueued,
    dependencies=[Depends(require_capabilities("identity", "image_generation", "storage"))],
)
def regenerate_image(
    payload: RegenerateImageRequest,
    background_tasks: BackgroundTasks,
    user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AssetJobsQueued:
    try:
        story = store.get_story(db, payload.story_id, user)
    except (StoryNotFoundError, StoryAccessDeniedError) as exc:
        raise as_app_error(exc) from exc
    segment = next((item for item in story.segments if item.id == payload.segment_id), None)
    if segment is None:
        raise ResourceNotFoundError(f"segment {payload.segment_id} not found in story {payload.story_id}")
    if segment.image_status == AssetStatus.IN_PROGRESS.value and not release_stalled_asset(
        db, segment.id, AssetKind.IMAGE
    ):
        raise ResourceConflictError("Illustration is already being generated", code="ASSET_IN_PROGRESS")

    job_id = queue.enqueue(db, segment.id, AssetKind.IMAGE, {"restart": True})
    schedule_drain(background_tasks)
    return AssetJobsQueued(story_id=story.id, job_ids=[job_id], status="queued")


@router.post(
    "/generate-story-audio",
    response_model=AssetJobsQueued,
    dependencies=[Depends(require_capabilities("identity", "speech", "storage"))],
)
def generate_story_audio(
    payload: StoryAudioRequest,
    background_tasks: BackgroundTasks,
    user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AssetJobsQueued:
    try:
        story = store.get_story(db, payload.story_id, user)
    except (StoryNotFoundError, StoryAccessDeniedError) as exc:
        raise as_app_error(exc) from exc

    targets = story.segments
    if payload.segment_id is not None:
        targets = [item for item in story.segments if item.id == payload.segment_id]
        if not targets:
            raise ResourceNotFoundError(f"segment {payload.segment_id} not found in story {payload.story_id}")
    targets = [
        item
        for item in targets
        if item.audio_status != AssetStatus.IN_PROGRESS.value or release_stalled_asset(db, item.id, AssetKind.AUDIO)
    ]
    if not targets:
        raise ResourceConflictError("Narration is already being generated", code="ASSET_IN_PROGRESS")

    job_payload = {
        "restart": True,
        "character": payload.character,
        "story_type": payload.story_type,
        "emotion": payload.emotion,
    }
    job_ids = [queue.enqueue(db, item.id, AssetKind.AUDIO, job_payload) for item in targets]
    schedule_drain(background_tasks)
    return AssetJobsQueued(story_id=story.id, job_ids=job_ids, status="queued")


@router.post("/admin/asset-jobs/drain", response_model=DrainResponse)
def drain_jobs(
    payload: DrainRequest | None = None,
    _: dict = Depends(require_admin),
    db: Session = Depends(get_db),
) -> DrainResponse:
    processed = drain_asset_jobs(payload.limit if payload else None)
    return DrainResponse(processed=processed, counts=queue.job_counts(db))
