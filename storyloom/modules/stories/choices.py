from __future__ import annotations

import uuid

MAX_CHOICES = 3

# Texts emitted by text backends when they could not produce real choices.
FAILURE_FILLER_TEXTS: frozenset[str] = frozenset(
    {
        "continue the adventure",
        "continue the story",
        "look around carefully",
        "make a thoughtful choice",
        "try something different",
        "be brave and move forward",
        "make a decision",
        "think about it",
        "choice 1",
        "choice 2",
        "choice 3",
        "option 1",
        "option 2",
        "option 3",
        "option a",
        "option b",
        "option c",
    }
)


def _normalized(text: str) -> str:
    return " ".join(str(text or "").strip().strip(".!").lower().split())


def is_failure_filler(text: str) -> bool:
    return _normalized(text) in FAILURE_FILLER_TEXTS


def build_choices(texts: list[str], *, is_end: bool) -> list[dict]:
    """Turn choice labels into the stored choice shape.

    Terminal segments carry no choices; every other segment needs between
    one and ``MAX_CHOICES`` non-filler labels.
    """
    if is_end:
        if texts:
            raise ValueError("a terminal segment cannot carry choices")
        return []

    cleaned = [" ".join(str(text or "").split()) for text in texts]
    cleaned = [text for text in cleaned if text]
    if not cleaned:
        raise ValueError("a non-terminal segment needs at least one choice")
    if len(cleaned) > MAX_CHOICES:
        raise ValueError(f"a segment carries at most {MAX_CHOICES} choices")
    filler = [text for text in cleaned if is_failure_filler(text)]
    if filler:
        raise ValueError(f"choice text looks like generation filler: {filler[0]!r}")

    return [{"id": str(uuid.uuid4()), "text": text, "next_segment_id": None} for text in cleaned]
