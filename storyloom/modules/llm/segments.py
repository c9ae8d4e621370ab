from __future__ import annotations

import json
import re
from dataclasses import dataclass, field

from storyloom.modules.llm.choice_parser import complete_choices, parse_choices
from storyloom.modules.llm.errors import ERROR_JSON_PARSE, ERROR_SCHEMA_VALIDATE, NarrativeParseError

_FENCE_RE = re.compile(r"```(?:json)?\n?")
_JSON_BLOCK_RE = re.compile(r"\{[\s\S]*\}")


@dataclass(frozen=True, slots=True)
class GeneratedSegment:
    text: str
    choices: list[str]
    is_end: bool
    provider: str
    image_prompt: str | None = None
    usage: dict = field(default_factory=dict)


def _snippet(raw: str) -> str:
    return raw[:200]


def _validated_payload(payload: object, raw: str) -> tuple[str, list]:
    if not isinstance(payload, dict):
        raise NarrativeParseError("segment payload is not an object", error_kind=ERROR_SCHEMA_VALIDATE, raw_snippet=_snippet(raw))
    story_text = str(payload.get("story_text") or "").strip()
    choices = payload.get("choices")
    if not story_text or not isinstance(choices, list):
        raise NarrativeParseError(
            "segment payload missing story_text or choices",
            error_kind=ERROR_SCHEMA_VALIDATE,
            raw_snippet=_snippet(raw),
        )
    return story_text, [str(item) for item in choices]


def parse_structured_segment(raw: str, *, provider: str, expect_end: bool) -> GeneratedSegment:
    """Parse a schema-constrained response; anything but clean JSON is a failure."""
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise NarrativeParseError(f"invalid JSON from {provider}: {exc}", error_kind=ERROR_JSON_PARSE, raw_snippet=_snippet(raw)) from exc
    story_text, choices = _validated_payload(payload, raw)
    if expect_end:
        return GeneratedSegment(text=story_text, choices=[], is_end=True, provider=provider)
    return GeneratedSegment(
        text=story_text,
        choices=complete_choices(choices, story_text),
        is_end=False,
        provider=provider,
    )


def parse_legacy_segment(raw: str, *, provider: str, expect_end: bool) -> GeneratedSegment:
    cleaned = _FENCE_RE.sub("", raw.strip())
    match = _JSON_BLOCK_RE.search(cleaned)
    if match is None:
        raise NarrativeParseError(f"no JSON object in {provider} response", error_kind=ERROR_JSON_PARSE, raw_snippet=_snippet(raw))
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise NarrativeParseError(f"invalid JSON from {provider}: {exc}", error_kind=ERROR_JSON_PARSE, raw_snippet=_snippet(raw)) from exc

    story_text, choices = _validated_payload(payload, raw)
    if expect_end:
        return GeneratedSegment(text=story_text, choices=[], is_end=True, provider=provider)
    if not choices:
        trailing = cleaned[match.end():]
        return GeneratedSegment(
            text=story_text,
            choices=parse_choices(trailing, story_text),
            is_end=False,
            provider=provider,
        )
    return GeneratedSegment(
        text=story_text,
        choices=complete_choices(choices, story_text),
        is_end=False,
        provider=provider,
    )
