from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Literal

StoryLength = Literal["short", "medium", "long"]

CHAPTERS_BY_LENGTH: dict[str, int] = {"short": 3, "medium": 5, "long": 8}
AUDIO_COST = 5
MIN_WORDS_PER_CHAPTER = 40
MAX_WORDS_PER_CHAPTER = 400


@dataclass(frozen=True, slots=True)
class CostQuote:
    chapters: int
    story_cost: int
    audio_cost: int
    total_cost: int

    def to_payload(self) -> dict:
        data = asdict(self)
        return {
            "chapters": data["chapters"],
            "storyCost": data["story_cost"],
            "audioCost": data["audio_cost"],
            "totalCost": data["total_cost"],
        }


def length_for_words(words_per_chapter: int) -> StoryLength:
    if words_per_chapter < MIN_WORDS_PER_CHAPTER or words_per_chapter > MAX_WORDS_PER_CHAPTER:
        raise ValueError(
            f"words_per_chapter must be between {MIN_WORDS_PER_CHAPTER} and {MAX_WORDS_PER_CHAPTER}"
        )
    if words_per_chapter <= 80:
        return "short"
    if words_per_chapter <= 150:
        return "medium"
    return "long"


def quote(story_type: str, include_images: bool = True, include_audio: bool = False) -> CostQuote:
    """Price a story before purchase and at the server-side gate.

    Illustrations are bundled into the per-chapter price, so
    ``include_images`` never changes the total; narration is a flat add-on.
    """
    if story_type not in CHAPTERS_BY_LENGTH:
        raise ValueError(f"unknown story length: {story_type}")
    chapters = CHAPTERS_BY_LENGTH[story_type]
    story_cost = chapters
    audio_cost = AUDIO_COST if include_audio else 0
    return CostQuote(
        chapters=chapters,
        story_cost=story_cost,
        audio_cost=audio_cost,
        total_cost=story_cost + audio_cost,
    )


def quote_for_words(words_per_chapter: int, include_images: bool = True, include_audio: bool = False) -> CostQuote:
    return quote(length_for_words(words_per_chapter), include_images=include_images, include_audio=include_audio)
