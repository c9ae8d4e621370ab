from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from storyloom.modules.credits.pricing import MAX_WORDS_PER_CHAPTER, MIN_WORDS_PER_CHAPTER, StoryLength


class QuoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    story_type: StoryLength | None = Field(default=None, alias="storyType")
    words_per_chapter: int | None = Field(
        default=None,
        alias="wordsPerChapter",
        ge=MIN_WORDS_PER_CHAPTER,
        le=MAX_WORDS_PER_CHAPTER,
    )
    include_images: bool = Field(default=True, alias="includeImages")
    include_audio: bool = Field(default=False, alias="includeAudio")

    @model_validator(mode="after")
    def require_length(self):
        if self.story_type is None and self.words_per_chapter is None:
            raise ValueError("either storyType or wordsPerChapter is required")
        return self


class QuoteResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    story_type: StoryLength = Field(alias="storyType")
    chapters: int
    story_cost: int = Field(alias="storyCost")
    audio_cost: int = Field(alias="audioCost")
    total_cost: int = Field(alias="totalCost")


class BalanceResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    balance: int
    lifetime_earned: int = Field(alias="lifetimeEarned")
    lifetime_spent: int = Field(alias="lifetimeSpent")


class TransactionItem(BaseModel):
    id: str
    amount: int
    reason: str
    reference_id: str | None = None
    created_at: datetime


class TransactionPage(BaseModel):
    transactions: list[TransactionItem]
    total: int
    limit: int
    offset: int


class GrantRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1, max_length=64)
    amount: int = Field(gt=0, le=10_000)
    reference_id: str | None = Field(default=None, alias="referenceId", max_length=128)


class GrantResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    balance: int
