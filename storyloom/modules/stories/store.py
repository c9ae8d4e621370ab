"""Narrative graph store: stories and their tree of segments.

Positions are allocated as ``max(position) + 1`` inside the inserting
transaction. The ``(story_id, position)`` unique constraint turns a lost
race into an ``IntegrityError``, which is retried once with a fresh read.
A draft pinned to a ``position`` is rejected once that slot is taken.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storyloom.db.models import Story, StorySegment
from storyloom.modules.access.deps import authorize_ownership
from storyloom.modules.stories.choices import build_choices
from storyloom.modules.stories.errors import (
    InvalidChoiceError,
    PositionConflictError,
    StoryAccessDeniedError,
    StoryCompletedError,
    StoryNotFoundError,
)
from storyloom.modules.stories.normalize import normalize_age_group, normalize_genre, word_count
from storyloom.utils.time import utc_now_naive

logger = logging.getLogger(__name__)

POSITION_ALLOCATION_ATTEMPTS = 2
ASSET_STATUSES = ("not_started", "in_progress", "completed", "failed")


@dataclass(frozen=True, slots=True)
class StoryParams:
    title: str
    genre: str
    age_group: str
    description: str = ""
    target_age: int | None = None
    story_length: str = "medium"
    prepaid_segments: int = 5
    details: dict = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SegmentDraft:
    content: str
    choices: list[str]
    is_end: bool = False
    parent_segment_id: uuid.UUID | None = None
    choice_index: int | None = None
    image_prompt: str | None = None
    generated_by: str = ""
    segment_id: uuid.UUID | None = None
    position: int | None = None


@dataclass(frozen=True, slots=True)
class SegmentRecord:
    id: uuid.UUID
    story_id: uuid.UUID
    position: int
    parent_segment_id: uuid.UUID | None
    content: str
    word_count: int
    choices: list[dict]
    is_end: bool
    generated_by: str
    image_prompt: str | None
    image_url: str | None
    image_status: str
    audio_url: str | None
    audio_status: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class StoryRecord:
    id: uuid.UUID
    user_id: str
    title: str
    description: str
    genre: str
    age_group: str
    story_length: str
    details: dict
    prepaid_segments: int
    is_public: bool
    is_completed: bool
    segment_count: int
    audio_generation_status: str
    created_at: datetime
    updated_at: datetime
    segments: list[SegmentRecord] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class StoryFilter:
    status: str | None = None
    genre: str | None = None


@dataclass(frozen=True, slots=True)
class StoryPage:
    stories: list[StoryRecord]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.stories) < self.total


def segment_record(row: StorySegment) -> SegmentRecord:
    return SegmentRecord(
        id=row.id,
        story_id=row.story_id,
        position=int(row.position),
        parent_segment_id=row.parent_segment_id,
        content=row.content,
        word_count=int(row.word_count or 0),
        choices=[dict(choice) for choice in (row.choices or [])],
        is_end=bool(row.is_end),
        generated_by=row.generated_by or "",
        image_prompt=row.image_prompt,
        image_url=row.image_url,
        image_status=row.image_status,
        audio_url=row.audio_url,
        audio_status=row.audio_status,
        created_at=row.created_at,
    )


def story_record(row: Story, segments: list[SegmentRecord] | None = None) -> StoryRecord:
    params = dict(row.story_params or {})
    return StoryRecord(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        description=row.description or "",
        genre=row.story_mode,
        age_group=normalize_age_group(row.target_age, params.get("target_age")),
        story_length=row.story_length,
        details=params,
        prepaid_segments=int(row.prepaid_segments or 0),
        is_public=bool(row.is_public),
        is_completed=bool(row.is_completed),
        segment_count=int(row.segment_count or 0),
        audio_generation_status=row.audio_generation_status,
        created_at=row.created_at,
        updated_at=row.updated_at,
        segments=list(segments or []),
    )


def _load_story(db: Session, story_id: uuid.UUID) -> Story:
    row = db.execute(
        select(Story).where(Story.id == story_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if row is None:
        raise StoryNotFoundError(f"story {story_id} not found")
    return row


def _owned_story(db: Session, story_id: uuid.UUID, caller: dict) -> Story:
    row = _load_story(db, story_id)
    if not authorize_ownership(row.user_id, caller):
        raise StoryAccessDeniedError(f"story {story_id} belongs to another user")
    return row


def _current_max_position(db: Session, story_id: uuid.UUID) -> int:
    value = db.execute(select(func.max(StorySegment.position)).where(StorySegment.story_id == story_id)).scalar_one()
    return int(value or 0)


def _ordered_segments(db: Session, story_id: uuid.UUID) -> list[StorySegment]:
    return list(
        db.execute(
            select(StorySegment)
            .where(StorySegment.story_id == story_id)
            .order_by(StorySegment.position.asc())
            .execution_options(populate_existing=True)
        ).scalars()
    )


def create_story(db: Session, owner_id: str, params: StoryParams, *, story_id: uuid.UUID | None = None) -> StoryRecord:
    details = dict(params.details)
    if params.target_age is not None:
        details["target_age"] = params.target_age
    row = Story(
        id=story_id or uuid.uuid4(),
        user_id=owner_id,
        title=params.title.strip(),
        description=params.description.strip(),
        story_mode=normalize_genre(params.genre),
        target_age=normalize_age_group(params.age_group, params.target_age),
        story_length=params.story_length,
        story_params=details,
        prepaid_segments=int(params.prepaid_segments),
        is_public=False,
        is_completed=False,
        segment_count=0,
        audio_generation_status="not_started",
    )
    db.add(row)
    db.flush()
    return story_record(row)


def _bind_choice(parent: StorySegment, choice_index: int, segment_id: uuid.UUID) -> None:
    choices = [dict(choice) for choice in (parent.choices or [])]
    if choice_index < 0 or choice_index >= len(choices):
        raise InvalidChoiceError(f"choice index {choice_index} out of range for segment {parent.id}")
    if choices[choice_index].get("next_segment_id"):
        logger.info("choice %s on segment %s already linked; keeping first link", choice_index, parent.id)
        return
    choices[choice_index]["next_segment_id"] = str(segment_id)
    parent.choices = choices


def _insert_segment(db: Session, story: Story, draft: SegmentDraft, stored_choices: list[dict]) -> StorySegment:
    max_position = _current_max_position(db, story.id)
    if draft.position is not None and draft.position != max_position + 1:
        raise PositionConflictError(
            f"position {draft.position} of story {story.id} was taken; next free position is {max_position + 1}"
        )
    parent: StorySegment | None = None
    if draft.parent_segment_id is None:
        if max_position > 0:
            raise PositionConflictError(f"story {story.id} already has a root segment")
    else:
        parent = db.execute(
            select(StorySegment)
            .where(StorySegment.id == draft.parent_segment_id, StorySegment.story_id == story.id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if parent is None:
            raise StoryNotFoundError(f"parent segment {draft.parent_segment_id} not found")
        if parent.is_end:
            raise StoryCompletedError(f"story {story.id} already ended")

    segment = StorySegment(
        id=draft.segment_id or uuid.uuid4(),
        story_id=story.id,
        position=max_position + 1,
        parent_segment_id=draft.parent_segment_id,
        content=draft.content.strip(),
        word_count=word_count(draft.content),
        choices=stored_choices,
        is_end=draft.is_end,
        generated_by=draft.generated_by,
        image_prompt=draft.image_prompt,
        image_status="not_started",
        audio_status="not_started",
    )
    db.add(segment)
    db.flush()

    if parent is not None and draft.choice_index is not None:
        _bind_choice(parent, draft.choice_index, segment.id)

    story.segment_count = max_position + 1
    if draft.is_end:
        story.is_completed = True
    story.updated_at = utc_now_naive()
    db.flush()
    return segment


def append_segment_in_transaction(db: Session, story_id: uuid.UUID, caller: dict, draft: SegmentDraft) -> SegmentRecord:
    """Insert within the caller's open transaction; no retry."""
    stored_choices = build_choices(draft.choices, is_end=draft.is_end)
    story = _owned_story(db, story_id, caller)
    if story.is_completed:
        raise StoryCompletedError(f"story {story_id} already ended")
    return segment_record(_insert_segment(db, story, draft, stored_choices))


def append_segment(db: Session, story_id: uuid.UUID, caller: dict, draft: SegmentDraft) -> SegmentRecord:
    stored_choices = build_choices(draft.choices, is_end=draft.is_end)
    last_exc: IntegrityError | None = None
    for attempt in range(POSITION_ALLOCATION_ATTEMPTS):
        try:
            with db.begin():
                story = _owned_story(db, story_id, caller)
                if story.is_completed:
                    raise StoryCompletedError(f"story {story_id} already ended")
                record = segment_record(_insert_segment(db, story, draft, stored_choices))
            return record
        except IntegrityError as exc:
            last_exc = exc
            logger.info("segment position collision story=%s attempt=%d", story_id, attempt + 1)
            continue
    raise PositionConflictError(f"could not allocate a position for story {story_id}") from last_exc


def get_story(db: Session, story_id: uuid.UUID, caller: dict) -> StoryRecord:
    with db.begin():
        story = _owned_story(db, story_id, caller)
        segments = [segment_record(row) for row in _ordered_segments(db, story_id)]
        return story_record(story, segments)


def get_segment(db: Session, segment_id: uuid.UUID) -> SegmentRecord | None:
    with db.begin():
        row = db.execute(
            select(StorySegment).where(StorySegment.id == segment_id).execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return segment_record(row) if row else None


def list_stories(
    db: Session,
    owner_id: str,
    story_filter: StoryFilter,
    *,
    limit: int = 10,
    offset: int = 0,
    include_segments: bool = False,
) -> StoryPage:
    conditions = [Story.user_id == owner_id]
    if story_filter.status == "completed":
        conditions.append(Story.is_completed.is_(True))
    elif story_filter.status == "in_progress":
        conditions.append(Story.is_completed.is_(False))
    if story_filter.genre:
        conditions.append(Story.story_mode == normalize_genre(story_filter.genre))

    with db.begin():
        total = db.execute(select(func.count()).select_from(Story).where(*conditions)).scalar_one()
        rows = db.execute(
            select(Story)
            .where(*conditions)
            .order_by(Story.created_at.desc(), Story.id.desc())
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        ).scalars().all()
        stories = []
        for row in rows:
            segments = [segment_record(seg) for seg in _ordered_segments(db, row.id)] if include_segments else []
            stories.append(story_record(row, segments))
    return StoryPage(stories=stories, total=int(total), limit=limit, offset=offset)
