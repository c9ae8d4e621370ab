"""Narration markup: story-type prosody templates and character voices.

Unknown story types, emotions and character keys degrade to the narrator
voice in the default template instead of failing the request.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from xml.sax.saxutils import escape

logger = logging.getLogger(__name__)

DEFAULT_STORY_TYPE = "fantasy"
DEFAULT_CHARACTER = "narrator"
AUDIO_FORMAT = "mp3"
SAMPLE_RATE = 22050
LANGUAGE_CODE = "en-US"
CHARS_PER_SECOND = 150


@dataclass(frozen=True, slots=True)
class VoiceProfile:
    voice: str
    rate: str
    pitch: str
    description: str


@dataclass(frozen=True, slots=True)
class StoryTemplate:
    rate: str
    pitch: str
    volume: str
    emotions: dict[str, str]


STORY_TEMPLATES: dict[str, StoryTemplate] = {
    "bedtime": StoryTemplate(
        rate="0.9",
        pitch="-2st",
        volume="soft",
        emotions={
            "calm": '<prosody rate="0.8" pitch="-3st">',
            "gentle": '<prosody rate="0.85" pitch="-2st">',
            "whisper": '<prosody rate="0.7" volume="x-soft" pitch="-4st">',
        },
    ),
    "adventure": StoryTemplate(
        rate="1.1",
        pitch="+1st",
        volume="medium",
        emotions={
            "excited": '<prosody rate="1.3" pitch="+3st" volume="loud">',
            "suspenseful": '<prosody rate="0.9" pitch="-1st" volume="soft">',
            "dramatic": '<prosody rate="1.2" pitch="+2st" volume="loud">',
        },
    ),
    "fantasy": StoryTemplate(
        rate="1.0",
        pitch="0st",
        volume="medium",
        emotions={
            "magical": '<prosody rate="0.95" pitch="+1st">',
            "mysterious": '<prosody rate="0.85" pitch="-2st" volume="soft">',
            "heroic": '<prosody rate="1.15" pitch="+2st" volume="loud">',
        },
    ),
}

CHARACTER_VOICES: dict[str, VoiceProfile] = {
    "narrator": VoiceProfile("English-US.Female-1", "1.0", "0st", "Warm, storytelling narrator voice"),
    "child_protagonist": VoiceProfile("English-US.Female-2", "1.1", "+2st", "Young, curious child voice"),
    "wise_character": VoiceProfile("English-US.Male-1", "0.9", "-1st", "Deep, wise mentor voice"),
    "magical_being": VoiceProfile("English-US.Female-3", "0.95", "+3st", "Ethereal, magical creature voice"),
    "villain": VoiceProfile("English-US.Male-2", "0.85", "-3st", "Dark, menacing antagonist voice"),
}


@dataclass(frozen=True, slots=True)
class NarrationPlan:
    text: str
    markup: str
    character: str
    story_type: str
    emotion: str
    voice: VoiceProfile
    ssml_enhanced: bool

    def request_payload(self) -> dict:
        return {
            "text": self.markup if self.ssml_enhanced else self.text,
            "voice": self.voice.voice,
            "encoding": AUDIO_FORMAT,
            "sample_rate": SAMPLE_RATE,
            "language_code": LANGUAGE_CODE,
            "ssml": self.ssml_enhanced,
        }

    @property
    def estimated_duration_s(self) -> int:
        return math.ceil(len(self.text) / CHARS_PER_SECOND)


def resolve_voice(character: str | None) -> tuple[str, VoiceProfile]:
    key = str(character or "").strip() or DEFAULT_CHARACTER
    if key not in CHARACTER_VOICES:
        logger.info("unknown character voice %r; using %s", key, DEFAULT_CHARACTER)
        key = DEFAULT_CHARACTER
    return key, CHARACTER_VOICES[key]


def resolve_story_type(story_type: str | None) -> str:
    key = str(story_type or "").strip() or DEFAULT_STORY_TYPE
    if key not in STORY_TEMPLATES:
        logger.info("unknown story type %r; using %s", key, DEFAULT_STORY_TYPE)
        key = DEFAULT_STORY_TYPE
    return key


def compose_narration(
    text: str,
    *,
    character: str | None = None,
    story_type: str | None = None,
    emotion: str | None = None,
    ssml_enhanced: bool = True,
) -> NarrationPlan:
    character_key, voice = resolve_voice(character)
    story_key = resolve_story_type(story_type)
    template = STORY_TEMPLATES[story_key]
    emotion_key = str(emotion or "").strip()

    body = escape(text)
    if emotion_key in template.emotions:
        body = f"{template.emotions[emotion_key]}{body}</prosody>"
    else:
        emotion_key = "default"

    markup = (
        f'<speak><voice name="{voice.voice}"><prosody rate="{voice.rate}" pitch="{voice.pitch}">'
        f'<prosody rate="{template.rate}" pitch="{template.pitch}" volume="{template.volume}">{body}</prosody>'
        "</prosody></voice></speak>"
    )
    return NarrationPlan(
        text=text,
        markup=markup,
        character=character_key,
        story_type=story_key,
        emotion=emotion_key,
        voice=voice,
        ssml_enhanced=ssml_enhanced,
    )


def browser_fallback(plan: NarrationPlan, error: str) -> dict:
    return {
        "error": error,
        "fallback": {
            "type": "browser_tts",
            "text": plan.text,
            "voice": plan.voice.voice,
            "rate": float(plan.voice.rate),
            "pitch": plan.voice.pitch,
            "message": "Using browser speech synthesis as fallback",
        },
    }
