from __future__ import annotations

import logging
import re

from storyloom.modules.llm.errors import ERROR_NO_CHOICES, NarrativeParseError
from storyloom.modules.stories.choices import MAX_CHOICES, is_failure_filler

logger = logging.getLogger(__name__)

_NUMBERING_RE = re.compile(r"^\d+[.):]?\s*")
_LETTERING_RE = re.compile(r"^[A-Za-z][.):]\s+")
_LOOSE_LETTERING_RE = re.compile(r"^[A-Za-z][.):]?\s*(?=[A-Z])")
_BULLET_RE = re.compile(r"^[-•*.+]\s*")
_QUOTED_RE = re.compile(r"^[\"'`](.*)[\"'`]$")
_PURE_NUMBER_RE = re.compile(r"^\d+\.?\s*$")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
_DELIMITER_SPLIT_RE = re.compile(r"[,;\n\r\-|]+")

CONTEXTUAL_FALLBACKS: tuple[tuple[tuple[str, ...], tuple[str, ...]], ...] = (
    (("door", "entrance"), ("Go through the door", "Look for another way", "Wait and listen first")),
    (("magic", "spell"), ("Use magic to help", "Be careful with the magic", "Ask about the magic")),
    (("forest", "woods"), ("Follow the forest path", "Look for hidden trails", "Call out for help")),
    (("castle", "tower"), ("Explore the castle", "Find another entrance", "Look for a way up")),
    (("dragon", "creature"), ("Approach carefully", "Try to communicate", "Find a safe distance")),
    (("treasure", "chest"), ("Open the treasure", "Check for traps first", "Look around more")),
    (("friend",), ("Help your friend", "Ask for help", "Work together")),
    (("scared", "afraid"), ("Take a deep breath", "Find courage within", "Ask for support")),
    (("lost", "confused"), ("Look for clues", "Ask for directions", "Stay calm and think")),
    (("adventure", "journey"), ("Continue exploring", "Look for new paths", "Be brave and curious")),
)


def _split_lines(text: str) -> list[str]:
    results = []
    for line in re.split(r"[\n\r]+", text):
        line = _NUMBERING_RE.sub("", line.strip())
        line = _LETTERING_RE.sub("", line)
        line = _BULLET_RE.sub("", line)
        line = _QUOTED_RE.sub(r"\1", line).strip()
        if len(line) > 5 and not _PURE_NUMBER_RE.match(line):
            results.append(line)
    return results[:MAX_CHOICES]


def _split_sentences(text: str) -> list[str]:
    joined = re.sub(r"[\n\r]+", " ", text)
    sentences = [part.strip() for part in _SENTENCE_SPLIT_RE.split(joined)]
    return [part for part in sentences if 5 < len(part) < 100][:MAX_CHOICES]


def _split_delimited(text: str) -> list[str]:
    results = []
    for part in _DELIMITER_SPLIT_RE.split(text):
        part = _NUMBERING_RE.sub("", part.strip())
        part = _LOOSE_LETTERING_RE.sub("", part)
        if 3 < len(part) < 50:
            results.append(part)
    return results[:MAX_CHOICES]


def extract_choice_lines(text: str) -> list[str]:
    choices = _split_lines(text)
    if len(choices) < MAX_CHOICES:
        sentences = _split_sentences(text)
        if len(sentences) >= MAX_CHOICES:
            choices = sentences
    if len(choices) < MAX_CHOICES:
        fragments = _split_delimited(text)
        if len(fragments) >= len(choices):
            choices = fragments
    return choices


def contextual_fallbacks(story_text: str) -> list[str]:
    lowered = story_text.lower()
    for keywords, fallbacks in CONTEXTUAL_FALLBACKS:
        if any(keyword in lowered for keyword in keywords):
            return list(fallbacks)
    return []


def complete_choices(candidates: list[str], story_text: str) -> list[str]:
    """Keep up to three usable labels, padding from story-aware fallbacks."""
    seen: set[str] = set()
    choices: list[str] = []
    for text in candidates:
        text = " ".join(str(text or "").split())
        key = text.lower()
        if not text or key in seen or is_failure_filler(text):
            continue
        seen.add(key)
        choices.append(text)
        if len(choices) == MAX_CHOICES:
            return choices

    if len(choices) < MAX_CHOICES:
        for text in contextual_fallbacks(story_text):
            if text.lower() in seen:
                continue
            seen.add(text.lower())
            choices.append(text)
            if len(choices) == MAX_CHOICES:
                break

    if not choices:
        raise NarrativeParseError("no usable choices in response", error_kind=ERROR_NO_CHOICES)
    if len(choices) < MAX_CHOICES:
        logger.info("segment keeps %d choice(s) after parsing", len(choices))
    return choices


def parse_choices(raw_text: str, story_text: str) -> list[str]:
    return complete_choices(extract_choice_lines(raw_text or ""), story_text)
