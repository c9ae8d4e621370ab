import uuid

import pytest
from sqlalchemy.exc import IntegrityError

from storyloom.modules.stories import store
from storyloom.modules.stories.errors import (
    InvalidChoiceError,
    PositionConflictError,
    StoryAccessDeniedError,
    StoryCompletedError,
    StoryNotFoundError,
)

OWNER = {"id": "owner-1", "email": "", "role": "authenticated"}
STRANGER = {"id": "owner-2", "email": "", "role": "authenticated"}
ADMIN = {"id": "ops", "email": "", "role": "admin"}
CHOICES = ["Follow the glowing fireflies", "Knock on the mossy door", "Climb the tall silver tree"]


def _new_story(db, **params) -> uuid.UUID:
    defaults = {"title": "Moon Boat", "genre": "Bedtime Story", "age_group": "4-6"}
    defaults.update(params)
    with db.begin():
        record = store.create_story(db, OWNER["id"], store.StoryParams(**defaults))
    return record.id


def _append(db, story_id, *, parent=None, choice_index=None, is_end=False, caller=OWNER):
    draft = store.SegmentDraft(
        content="The moon boat drifted over sleepy clouds.",
        choices=[] if is_end else list(CHOICES),
        is_end=is_end,
        parent_segment_id=parent,
        choice_index=choice_index,
    )
    return store.append_segment(db, story_id, caller, draft)


def test_positions_are_contiguous_and_choices_link(db) -> None:
    story_id = _new_story(db)
    root = _append(db, story_id)
    second = _append(db, story_id, parent=root.id, choice_index=1)
    third = _append(db, story_id, parent=second.id, choice_index=0)

    story = store.get_story(db, story_id, OWNER)
    assert [segment.position for segment in story.segments] == [1, 2, 3]
    assert story.segment_count == 3
    assert story.segments[0].choices[1]["next_segment_id"] == str(second.id)
    assert story.segments[0].choices[0]["next_segment_id"] is None
    assert story.segments[1].choices[0]["next_segment_id"] == str(third.id)
    assert root.parent_segment_id is None
    assert root.word_count == 7


def test_story_fields_are_normalized(db) -> None:
    story_id = _new_story(db, genre="Fairy Tale", age_group="13+")
    story = store.get_story(db, story_id, OWNER)
    assert story.genre == "fairy_tale"
    assert story.age_group == "10-12"


def test_second_root_is_rejected(db) -> None:
    story_id = _new_story(db)
    _append(db, story_id)
    with pytest.raises(PositionConflictError):
        _append(db, story_id)


def test_position_collision_is_retried_once(db, monkeypatch) -> None:
    story_id = _new_story(db)
    root = _append(db, story_id)
    second = _append(db, story_id, parent=root.id, choice_index=0)

    real_max = store._current_max_position
    calls = {"n": 0}

    def stale_max(session, sid):
        calls["n"] += 1
        # The first read misses the concurrently committed segment at position 2.
        return 1 if calls["n"] == 1 else real_max(session, sid)

    monkeypatch.setattr(store, "_current_max_position", stale_max)
    third = _append(db, story_id, parent=second.id, choice_index=2)

    assert calls["n"] == 2
    assert third.position == 3
    assert [segment.position for segment in store.get_story(db, story_id, OWNER).segments] == [1, 2, 3]


def test_persistent_collision_surfaces_conflict(db, monkeypatch) -> None:
    story_id = _new_story(db)
    root = _append(db, story_id)
    _append(db, story_id, parent=root.id, choice_index=0)
    monkeypatch.setattr(store, "_current_max_position", lambda session, sid: 1)

    with pytest.raises(PositionConflictError) as exc_info:
        _append(db, story_id, parent=root.id, choice_index=1)
    assert isinstance(exc_info.value.__cause__, IntegrityError)


def test_draft_pinned_to_a_taken_position_is_rejected(db) -> None:
    story_id = _new_story(db)
    root = _append(db, story_id)
    second = _append(db, story_id, parent=root.id, choice_index=0)

    late = store.SegmentDraft(
        content="The moon boat found the harbor at last.",
        choices=[],
        is_end=True,
        parent_segment_id=root.id,
        choice_index=1,
        position=2,
    )
    with pytest.raises(PositionConflictError, match="position 2"):
        store.append_segment(db, story_id, OWNER, late)

    story = store.get_story(db, story_id, OWNER)
    assert [segment.position for segment in story.segments] == [1, 2]
    assert story.is_completed is False
    assert story.segments[0].choices[1]["next_segment_id"] is None

    pinned = store.append_segment(
        db,
        story_id,
        OWNER,
        store.SegmentDraft(
            content="The moon boat found the harbor at last.",
            choices=list(CHOICES),
            parent_segment_id=second.id,
            choice_index=0,
            position=3,
        ),
    )
    assert pinned.position == 3


def test_ownership_isolation(db) -> None:
    story_id = _new_story(db)
    _append(db, story_id)

    with pytest.raises(StoryAccessDeniedError):
        store.get_story(db, story_id, STRANGER)
    with pytest.raises(StoryAccessDeniedError):
        _append(db, story_id, caller=STRANGER)
    assert store.get_story(db, story_id, ADMIN).id == story_id


def test_missing_story(db) -> None:
    with pytest.raises(StoryNotFoundError):
        store.get_story(db, uuid.uuid4(), OWNER)
    with pytest.raises(StoryNotFoundError):
        _append(db, uuid.uuid4())


def test_terminal_segment_closes_story(db) -> None:
    story_id = _new_story(db)
    root = _append(db, story_id)
    end = _append(db, story_id, parent=root.id, choice_index=0, is_end=True)

    assert end.is_end is True
    assert end.choices == []
    story = store.get_story(db, story_id, OWNER)
    assert story.is_completed is True
    with pytest.raises(StoryCompletedError):
        _append(db, story_id, parent=end.id)


def test_invalid_choice_index_rolls_back(db) -> None:
    story_id = _new_story(db)
    root = _append(db, story_id)
    with pytest.raises(InvalidChoiceError):
        _append(db, story_id, parent=root.id, choice_index=7)
    assert store.get_story(db, story_id, OWNER).segment_count == 1


def test_filler_choices_are_refused(db) -> None:
    story_id = _new_story(db)
    draft = store.SegmentDraft(content="Once upon a time.", choices=["Continue the adventure", "Option A"])
    with pytest.raises(ValueError):
        store.append_segment(db, story_id, OWNER, draft)


def test_list_stories_filters_and_pages(db) -> None:
    first = _new_story(db, title="One", genre="Adventure")
    second = _new_story(db, title="Two", genre="Fantasy")
    _new_story(db, title="Three", genre="Fantasy")
    root = _append(db, first)
    _append(db, first, parent=root.id, choice_index=0, is_end=True)
    _append(db, second)

    page = store.list_stories(db, OWNER["id"], store.StoryFilter(), limit=2, offset=0)
    assert page.total == 3
    assert len(page.stories) == 2
    assert page.has_more is True

    completed = store.list_stories(db, OWNER["id"], store.StoryFilter(status="completed"), include_segments=True)
    assert [story.title for story in completed.stories] == ["One"]
    assert [segment.position for segment in completed.stories[0].segments] == [1, 2]

    fantasy = store.list_stories(db, OWNER["id"], store.StoryFilter(status="in_progress", genre="fantasy"))
    assert {story.title for story in fantasy.stories} == {"Two", "Three"}
    assert all(story.segments == [] for story in fantasy.stories)

    assert store.list_stories(db, STRANGER["id"], store.StoryFilter()).total == 0
