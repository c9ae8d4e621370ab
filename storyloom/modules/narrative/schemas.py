from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storyloom.modules.credits.pricing import MAX_WORDS_PER_CHAPTER, MIN_WORDS_PER_CHAPTER
from storyloom.modules.stories.store import SegmentRecord, StoryRecord


class CharacterIn(BaseModel):
    name: str = Field(min_length=1, max_length=80)
    description: str = Field(default="", max_length=300)


class CreateStoryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)
    genre: str = Field(min_length=1, max_length=64)
    age_group: str = Field(alias="ageGroup", min_length=1, max_length=16)
    target_age: int | None = Field(default=None, alias="targetAge", ge=2, le=18)
    theme: str | None = Field(default=None, max_length=300)
    setting: str | None = Field(default=None, max_length=300)
    characters: list[CharacterIn] = Field(default_factory=list, max_length=8)
    conflict: str | None = Field(default=None, max_length=500)
    quest: str | None = Field(default=None, max_length=500)
    moral_lesson: str | None = Field(default=None, alias="moralLesson", max_length=300)
    art_style: str | None = Field(default=None, alias="artStyle", max_length=120)
    words_per_chapter: int = Field(
        default=120,
        alias="wordsPerChapter",
        ge=MIN_WORDS_PER_CHAPTER,
        le=MAX_WORDS_PER_CHAPTER,
    )
    include_audio: bool = Field(default=False, alias="includeAudio")

    @field_validator("title", "genre", "age_group")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class StoryRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    story_id: uuid.UUID = Field(alias="storyId")


class GenerateSegmentRequest(StoryRef):
    choice_index: int | None = Field(default=None, alias="choiceIndex")


class ChoiceOut(BaseModel):
    id: str
    text: str
    next_segment_id: str | None = None


class SegmentOut(BaseModel):
    id: uuid.UUID
    position: int
    content: str
    word_count: int
    choices: list[ChoiceOut]
    is_end: bool
    parent_segment_id: uuid.UUID | None = None
    image_url: str | None = None
    image_prompt: str | None = None
    image_status: str
    audio_url: str | None = None
    audio_status: str
    created_at: datetime

    @classmethod
    def from_record(cls, record: SegmentRecord) -> "SegmentOut":
        return cls(
            id=record.id,
            position=record.position,
            content=record.content,
            word_count=record.word_count,
            choices=[ChoiceOut(**choice) for choice in record.choices],
            is_end=record.is_end,
            parent_segment_id=record.parent_segment_id,
            image_url=record.image_url,
            image_prompt=record.image_prompt,
            image_status=record.image_status,
            audio_url=record.audio_url,
            audio_status=record.audio_status,
            created_at=record.created_at,
        )


class StoryOut(BaseModel):
    id: uuid.UUID
    title: str
    description: str
    genre: str
    age_group: str
    target_age: int | None = None
    is_public: bool
    is_completed: bool
    segment_count: int
    audio_generation_status: str
    created_at: datetime
    updated_at: datetime
    has_content: bool
    segments: list[SegmentOut] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record: StoryRecord) -> "StoryOut":
        target_age = record.details.get("target_age")
        return cls(
            id=record.id,
            title=record.title,
            description=record.description,
            genre=record.genre,
            age_group=record.age_group,
            target_age=int(target_age) if target_age is not None else None,
            is_public=record.is_public,
            is_completed=record.is_completed,
            segment_count=record.segment_count,
            audio_generation_status=record.audio_generation_status,
            created_at=record.created_at,
            updated_at=record.updated_at,
            has_content=record.segment_count > 0,
            segments=[SegmentOut.from_record(segment) for segment in record.segments],
        )


class CostOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chapters: int
    story_cost: int = Field(alias="storyCost")
    audio_cost: int = Field(alias="audioCost")
    total_cost: int = Field(alias="totalCost")


class CreateStoryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    story: StoryOut
    first_segment: SegmentOut = Field(alias="firstSegment")
    cost: CostOut
    replayed: bool = False
    message: str


class GenerateSegmentResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    story_id: uuid.UUID = Field(alias="storyId")
    segment: SegmentOut
    story_completed: bool = Field(alias="storyCompleted")
    credits_charged: int = Field(alias="creditsCharged")
    message: str


class GetStoryResponse(BaseModel):
    success: bool = True
    story: StoryOut


class StoryListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stories: list[StoryOut]
    total: int
    limit: int
    offset: int
    has_more: bool = Field(alias="hasMore")
