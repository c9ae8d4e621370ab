from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query
from sqlalchemy.orm import Session

from storyloom.db.session import get_db
from storyloom.modules.access.deps import get_current_user, require_capabilities
from storyloom.modules.assets.router import schedule_drain
from storyloom.modules.llm.writer import SegmentWriter, get_segment_writer
from storyloom.modules.migration.controller import MigrationController
from storyloom.modules.migration.router import get_migration_controller
from storyloom.modules.narrative import service
from storyloom.modules.narrative.errors import HANDLED_ERRORS, as_app_error
from storyloom.modules.narrative.schemas import (
    CostOut,
    CreateStoryRequest,
    CreateStoryResponse,
    GenerateSegmentRequest,
    GenerateSegmentResponse,
    GetStoryResponse,
    SegmentOut,
    StoryListResponse,
    StoryOut,
    StoryRef,
)
from storyloom.modules.stories import store

router = APIRouter(tags=["stories"])

MAX_PAGE_SIZE = 50
_generation_guard = [Depends(require_capabilities("identity", "text_generation"))]


def _story_request(payload: CreateStoryRequest) -> service.StoryRequest:
    details = {
        "theme": payload.theme,
        "setting": payload.setting,
        "characters": [character.model_dump() for character in payload.characters],
        "conflict": payload.conflict,
        "quest": payload.quest,
        "moral_lesson": payload.moral_lesson,
        "art_style": payload.art_style,
    }
    return service.StoryRequest(
        title=payload.title,
        genre=payload.genre,
        age_group=payload.age_group,
        description=payload.description,
        target_age=payload.target_age,
        words_per_chapter=payload.words_per_chapter,
        include_audio=payload.include_audio,
        details={key: value for key, value in details.items() if value},
    )


def _segment_response(result: service.SegmentResult, message: str) -> GenerateSegmentResponse:
    return GenerateSegmentResponse(
        story_id=result.story_id,
        segment=SegmentOut.from_record(result.segment),
        story_completed=result.story_completed,
        credits_charged=result.charged,
        message=message,
    )


@router.post("/create-story", response_model=CreateStoryResponse, dependencies=_generation_guard)
def create_story(
    payload: CreateStoryRequest,
    background_tasks: BackgroundTasks,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key", max_length=128),
    user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
    controller: MigrationController = Depends(get_migration_controller),
    writer: SegmentWriter = Depends(get_segment_writer),
) -> CreateStoryResponse:
    try:
        result = service.create_story(
            db,
            user=user,
            request=_story_request(payload),
            controller=controller,
            writer=writer,
            idempotency_key=idempotency_key,
        )
    except HANDLED_ERRORS as exc:
        raise as_app_error(exc) from exc

    schedule_drain(background_tasks)
    cost = result.cost
    return CreateStoryResponse(
        story=StoryOut.from_record(result.story),
        first_segment=SegmentOut.from_record(result.first_segment),
        cost=CostOut(
            chapters=cost.chapters,
            story_cost=cost.story_cost,
            audio_cost=cost.audio_cost,
            total_cost=cost.total_cost,
        ),
        replayed=result.replayed,
        message="Story already created" if result.replayed else "Story created successfully",
    )


@router.post("/generate-story-segment", response_model=GenerateSegmentResponse, dependencies=_generation_guard)
def generate_story_segment(
    payload: GenerateSegmentRequest,
    background_tasks: BackgroundTasks,
    user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
    controller: MigrationController = Depends(get_migration_controller),
    writer: SegmentWriter = Depends(get_segment_writer),
) -> GenerateSegmentResponse:
    try:
        result = service.generate_segment(
            db,
            user=user,
            story_id=payload.story_id,
            choice_index=payload.choice_index,
            controller=controller,
            writer=writer,
        )
    except HANDLED_ERRORS as exc:
        raise as_app_error(exc) from exc

    schedule_drain(background_tasks)
    message = "The story has reached its ending" if result.story_completed else "Segment generated successfully"
    return _segment_response(result, message)


@router.post("/generate-story-ending", response_model=GenerateSegmentResponse, dependencies=_generation_guard)
def generate_story_ending(
    payload: GenerateSegmentRequest,
    background_tasks: BackgroundTasks,
    user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
    controller: MigrationController = Depends(get_migration_controller),
    writer: SegmentWriter = Depends(get_segment_writer),
) -> GenerateSegmentResponse:
    try:
        result = service.generate_ending(
            db,
            user=user,
            story_id=payload.story_id,
            choice_index=payload.choice_index,
            controller=controller,
            writer=writer,
        )
    except HANDLED_ERRORS as exc:
        raise as_app_error(exc) from exc

    schedule_drain(background_tasks)
    return _segment_response(result, "Story ending generated successfully")


@router.post("/get-story", response_model=GetStoryResponse)
def get_story(
    payload: StoryRef,
    user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> GetStoryResponse:
    try:
        record = store.get_story(db, payload.story_id, user)
    except HANDLED_ERRORS as exc:
        raise as_app_error(exc) from exc
    return GetStoryResponse(story=StoryOut.from_record(record))


@router.get("/list-stories", response_model=StoryListResponse)
def list_stories(
    limit: int = Query(default=10, ge=1),
    offset: int = Query(default=0, ge=0),
    status: str | None = Query(default=None, pattern="^(completed|in_progress)$"),
    genre: str | None = Query(default=None, max_length=64),
    include_segments: bool = Query(default=False),
    user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> StoryListResponse:
    page = store.list_stories(
        db,
        str(user["id"]),
        store.StoryFilter(status=status, genre=genre),
        limit=min(limit, MAX_PAGE_SIZE),
        offset=offset,
        include_segments=include_segments,
    )
    return StoryListResponse(
        stories=[StoryOut.from_record(record) for record in page.stories],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
        has_more=page.has_more,
    )
