from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

CANONICAL_AGE_BANDS: tuple[str, ...] = ("4-6", "7-9", "10-12")
DEFAULT_AGE_BAND = "7-9"
_AGE_ALIASES: dict[str, str] = {
    "4-6": "4-6",
    "7-9": "7-9",
    "7-12": "10-12",
    "10-12": "10-12",
    "13+": "10-12",
    "13-18": "10-12",
}
_GENRE_SLUG_RE = re.compile(r"[^a-z0-9]+")


def _age_band_for_years(years: int) -> str:
    if years <= 6:
        return "4-6"
    if years <= 9:
        return "7-9"
    return "10-12"


def normalize_age_group(age_group: str | None, target_age: int | str | None = None) -> str:
    key = str(age_group or "").strip().replace(" ", "")
    if key in _AGE_ALIASES:
        return _AGE_ALIASES[key]

    if target_age is not None and str(target_age).strip().isdigit():
        return _age_band_for_years(int(str(target_age).strip()))

    logger.warning("unknown age group %r (target_age=%r); defaulting to %s", age_group, target_age, DEFAULT_AGE_BAND)
    return DEFAULT_AGE_BAND


def normalize_genre(value: str | None) -> str:
    slug = _GENRE_SLUG_RE.sub("_", str(value or "").strip().lower()).strip("_")
    return slug or "adventure"


def word_count(text: str) -> int:
    return len([word for word in str(text or "").split(" ") if word.strip()])
