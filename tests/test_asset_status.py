import pytest

from storyloom.modules.assets.status import (
    AssetKind,
    AssetStatus,
    InvalidAssetTransitionError,
    can_transition,
    transition,
)
from storyloom.modules.stories import store
from tests.support.segments import seed_segment


@pytest.mark.parametrize(
    ("current", "target", "restart", "allowed"),
    [
        (AssetStatus.NOT_STARTED, AssetStatus.IN_PROGRESS, False, True),
        (AssetStatus.NOT_STARTED, AssetStatus.COMPLETED, False, False),
        (AssetStatus.IN_PROGRESS, AssetStatus.COMPLETED, False, True),
        (AssetStatus.IN_PROGRESS, AssetStatus.FAILED, False, True),
        (AssetStatus.COMPLETED, AssetStatus.IN_PROGRESS, False, False),
        (AssetStatus.COMPLETED, AssetStatus.IN_PROGRESS, True, True),
        (AssetStatus.FAILED, AssetStatus.IN_PROGRESS, True, True),
        (AssetStatus.FAILED, AssetStatus.COMPLETED, True, False),
        (AssetStatus.COMPLETED, AssetStatus.NOT_STARTED, True, False),
    ],
)
def test_transition_table(current, target, restart, allowed) -> None:
    assert can_transition(current, target, restart=restart) is allowed


def _move(db, segment_id, target, **kwargs) -> None:
    with db.begin():
        transition(db, segment_id, AssetKind.IMAGE, target, **kwargs)


def test_guarded_update_follows_the_machine(db) -> None:
    _, segment_id = seed_segment(db)

    with pytest.raises(InvalidAssetTransitionError):
        _move(db, segment_id, AssetStatus.COMPLETED, url="https://cdn.test/a.png")

    _move(db, segment_id, AssetStatus.IN_PROGRESS)
    with pytest.raises(InvalidAssetTransitionError):
        _move(db, segment_id, AssetStatus.COMPLETED)
    _move(db, segment_id, AssetStatus.COMPLETED, url="https://cdn.test/a.png")

    segment = store.get_segment(db, segment_id)
    assert segment.image_status == "completed"
    assert segment.image_url == "https://cdn.test/a.png"
    assert segment.audio_status == "not_started"

    with pytest.raises(InvalidAssetTransitionError):
        _move(db, segment_id, AssetStatus.IN_PROGRESS)


def test_restart_then_failure_clears_url(db) -> None:
    _, segment_id = seed_segment(db)
    _move(db, segment_id, AssetStatus.IN_PROGRESS)
    _move(db, segment_id, AssetStatus.COMPLETED, url="https://cdn.test/a.png")

    _move(db, segment_id, AssetStatus.IN_PROGRESS, restart=True)
    _move(db, segment_id, AssetStatus.FAILED)

    segment = store.get_segment(db, segment_id)
    assert segment.image_status == "failed"
    assert segment.image_url is None


def test_audio_status_is_independent(db) -> None:
    _, segment_id = seed_segment(db)
    with db.begin():
        transition(db, segment_id, AssetKind.AUDIO, AssetStatus.IN_PROGRESS)
    segment = store.get_segment(db, segment_id)
    assert segment.audio_status == "in_progress"
    assert segment.image_status == "not_started"
