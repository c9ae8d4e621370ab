from __future__ import annotations

import uuid

from pydantic import BaseModel, ConfigDict, Field

MAX_TTS_CHARS = 5000


class NarrationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(min_length=1, max_length=MAX_TTS_CHARS)
    story_type: str | None = Field(default=None, alias="storyType")
    character: str | None = Field(default=None, alias="voice")
    emotion: str | None = None
    ssml_enhanced: bool = Field(default=True, alias="ssmlEnhanced")


class RegenerateImageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    story_id: uuid.UUID = Field(alias="storyId")
    segment_id: uuid.UUID = Field(alias="segmentId")


class StoryAudioRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    story_id: uuid.UUID = Field(alias="storyId")
    segment_id: uuid.UUID | None = Field(default=None, alias="segmentId")
    character: str | None = None
    story_type: str | None = Field(default=None, alias="storyType")
    emotion: str | None = None


class AssetJobsQueued(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    story_id: uuid.UUID = Field(alias="storyId")
    job_ids: list[uuid.UUID] = Field(alias="jobIds")
    status: str


class DrainRequest(BaseModel):
    limit: int | None = Field(default=None, ge=1, le=500)


class DrainResponse(BaseModel):
    processed: int
    counts: dict[str, int]
