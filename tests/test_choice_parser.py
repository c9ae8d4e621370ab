import pytest

from storyloom.modules.llm.choice_parser import complete_choices, extract_choice_lines, parse_choices
from storyloom.modules.llm.errors import ERROR_NO_CHOICES, NarrativeParseError
from storyloom.modules.stories.choices import build_choices, is_failure_filler
from storyloom.modules.stories.normalize import normalize_age_group, normalize_genre, word_count


@pytest.mark.parametrize(
    "raw",
    [
        "1. Follow the river\n2. Climb the hill\n3. Ask the owl for help",
        "A) Follow the river\nB) Climb the hill\nC) Ask the owl for help",
        "- Follow the river\n* Climb the hill\n• Ask the owl for help",
        '"Follow the river"\n"Climb the hill"\n"Ask the owl for help"',
    ],
)
def test_line_based_choices_are_cleaned(raw: str) -> None:
    assert extract_choice_lines(raw) == ["Follow the river", "Climb the hill", "Ask the owl for help"]


def test_sentence_split_when_lines_are_not_enough() -> None:
    raw = "Swim to the island. Build a raft! Wait for the tide?"
    assert extract_choice_lines(raw) == ["Swim to the island", "Build a raft", "Wait for the tide"]


def test_delimiter_split_as_last_resort() -> None:
    assert extract_choice_lines("Run home, hide in the barn; tell dad") == ["Run home", "hide in the barn", "tell dad"]


def test_pure_numbers_and_short_lines_are_dropped() -> None:
    assert extract_choice_lines("1.\n2.\nok\nPaint the fence blue") == ["Paint the fence blue"]


def test_filler_is_replaced_by_contextual_fallbacks() -> None:
    choices = complete_choices(["Open the door", "Make a decision", "open the door"], "The dragon slept by the door.")
    assert choices == ["Open the door", "Go through the door", "Look for another way"]


def test_partial_choices_are_kept_without_context() -> None:
    assert complete_choices(["Pet the kitten"], "A quiet afternoon at home.") == ["Pet the kitten"]


def test_no_usable_choices_is_a_parse_failure() -> None:
    with pytest.raises(NarrativeParseError) as exc_info:
        parse_choices("Option 1\nOption 2", "A quiet afternoon at home.")
    assert exc_info.value.error_kind == ERROR_NO_CHOICES


def test_contextual_fallbacks_fill_empty_response() -> None:
    assert parse_choices("", "A map to the hidden treasure!") == [
        "Open the treasure",
        "Check for traps first",
        "Look around more",
    ]


def test_failure_filler_detection_ignores_case_and_punctuation() -> None:
    assert is_failure_filler("  Continue the Adventure! ")
    assert not is_failure_filler("Continue along the beach")


def test_build_choices_shape() -> None:
    stored = build_choices(["  Ride   the comet "], is_end=False)
    assert stored[0]["text"] == "Ride the comet"
    assert stored[0]["next_segment_id"] is None
    assert build_choices([], is_end=True) == []
    with pytest.raises(ValueError):
        build_choices(["a", "b", "c", "d"], is_end=False)
    with pytest.raises(ValueError):
        build_choices(["Wave goodbye"], is_end=True)


@pytest.mark.parametrize(
    ("age_group", "target_age", "expected"),
    [
        ("4-6", None, "4-6"),
        ("7 - 9", None, "7-9"),
        ("7-12", None, "10-12"),
        ("13+", None, "10-12"),
        ("13-18", None, "10-12"),
        ("toddlers", 5, "4-6"),
        ("", "8", "7-9"),
        ("teens", 11, "10-12"),
        (None, None, "7-9"),
        ("grown-ups", "old", "7-9"),
    ],
)
def test_age_group_normalization(age_group, target_age, expected) -> None:
    assert normalize_age_group(age_group, target_age) == expected


def test_genre_and_word_count_helpers() -> None:
    assert normalize_genre("Bedtime Story") == "bedtime_story"
    assert normalize_genre("  Sci-Fi!! ") == "sci_fi"
    assert normalize_genre("") == "adventure"
    assert word_count("  two   words ") == 2
    assert word_count("") == 0
