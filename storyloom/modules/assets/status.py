"""Per-segment asset status machine.

``not_started -> in_progress -> completed | failed``. The terminal states
only move back to ``in_progress`` through an explicit restart, which is what
a new regenerate/narrate request does.
"""

from __future__ import annotations

import enum
import logging
import uuid

from sqlalchemy import update
from sqlalchemy.orm import Session

from storyloom.db.models import StorySegment

logger = logging.getLogger(__name__)


class AssetKind(str, enum.Enum):
    IMAGE = "image"
    AUDIO = "audio"


class AssetStatus(str, enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class InvalidAssetTransitionError(RuntimeError):
    """Raised when a status change skips or reverses the status machine."""


TERMINAL_STATUSES = frozenset({AssetStatus.COMPLETED, AssetStatus.FAILED})
_ALLOWED: dict[AssetStatus, frozenset[AssetStatus]] = {
    AssetStatus.NOT_STARTED: frozenset({AssetStatus.IN_PROGRESS}),
    AssetStatus.IN_PROGRESS: frozenset({AssetStatus.COMPLETED, AssetStatus.FAILED}),
    AssetStatus.COMPLETED: frozenset(),
    AssetStatus.FAILED: frozenset(),
}


def can_transition(current: AssetStatus, target: AssetStatus, *, restart: bool = False) -> bool:
    if target in _ALLOWED[current]:
        return True
    return restart and current in TERMINAL_STATUSES and target is AssetStatus.IN_PROGRESS


def _columns(kind: AssetKind):
    if kind is AssetKind.IMAGE:
        return StorySegment.image_status, StorySegment.image_url
    return StorySegment.audio_status, StorySegment.audio_url


def transition(
    db: Session,
    segment_id: uuid.UUID,
    kind: AssetKind,
    target: AssetStatus,
    *,
    url: str | None = None,
    restart: bool = False,
) -> None:
    """Move one asset of one segment to ``target`` with a guarded UPDATE.

    The WHERE clause only matches rows whose current status may legally move
    to ``target``, so a concurrent writer can never skip a state.
    """
    status_col, url_col = _columns(kind)
    sources = [status for status in AssetStatus if can_transition(status, target, restart=restart)]
    if not sources:
        raise InvalidAssetTransitionError(f"no status may move to {target.value}")

    values: dict = {status_col.key: target.value}
    if target is AssetStatus.COMPLETED:
        if not url:
            raise InvalidAssetTransitionError("completed assets need a URL")
        values[url_col.key] = url
    elif target is AssetStatus.FAILED:
        values[url_col.key] = None

    result = db.execute(
        update(StorySegment)
        .where(StorySegment.id == segment_id, status_col.in_([status.value for status in sources]))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidAssetTransitionError(
            f"segment {segment_id} {kind.value} cannot move to {target.value}"
        )
    logger.info("segment %s %s -> %s", segment_id, kind.value, target.value)
