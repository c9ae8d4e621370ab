"""Asset work queue backed by the ``asset_jobs`` table.

Jobs move ``queued -> running -> done | failed``. Claiming is a conditional
UPDATE on the queued status, so two drainers never run the same job. A
``running`` job untouched for ``asset_job_stale_after_s`` belongs to a lost
worker and is reclaimed as ``failed``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from storyloom.config import settings
from storyloom.db.models import AssetJob
from storyloom.modules.assets.status import AssetKind
from storyloom.utils.time import utc_now_naive

logger = logging.getLogger(__name__)

JOB_QUEUED = "queued"
JOB_RUNNING = "running"
JOB_DONE = "done"
JOB_FAILED = "failed"
MAX_ERROR_CHARS = 500


@dataclass(frozen=True, slots=True)
class QueuedJob:
    id: uuid.UUID
    segment_id: uuid.UUID
    kind: AssetKind
    attempts: int
    payload: dict = field(default_factory=dict)


def enqueue(db: Session, segment_id: uuid.UUID, kind: AssetKind, payload: dict | None = None) -> uuid.UUID:
    with db.begin():
        job = AssetJob(segment_id=segment_id, kind=kind.value, status=JOB_QUEUED, attempts=0, payload=dict(payload or {}))
        db.add(job)
        db.flush()
        job_id = job.id
    logger.info("asset job queued id=%s segment=%s kind=%s", job_id, segment_id, kind.value)
    return job_id


def claim_next(db: Session) -> QueuedJob | None:
    """Claim the oldest queued job, or return None when the queue is empty."""
    while True:
        with db.begin():
            row = db.execute(
                select(AssetJob)
                .where(AssetJob.status == JOB_QUEUED)
                .order_by(AssetJob.created_at.asc(), AssetJob.id.asc())
                .limit(1)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if row is None:
                return None
            claimed = db.execute(
                update(AssetJob)
                .where(AssetJob.id == row.id, AssetJob.status == JOB_QUEUED)
                .values(status=JOB_RUNNING, attempts=AssetJob.attempts + 1, updated_at=utc_now_naive())
                .execution_options(synchronize_session=False)
            ).rowcount
            if claimed == 1:
                return QueuedJob(
                    id=row.id,
                    segment_id=row.segment_id,
                    kind=AssetKind(row.kind),
                    attempts=int(row.attempts or 0) + 1,
                    payload=dict(row.payload or {}),
                )
        logger.debug("asset job %s claimed by another drainer", row.id)


def _finish(db: Session, job_id: uuid.UUID, status: str, error: str | None = None) -> None:
    with db.begin():
        db.execute(
            update(AssetJob)
            .where(AssetJob.id == job_id, AssetJob.status == JOB_RUNNING)
            .values(status=status, error=error, updated_at=utc_now_naive())
            .execution_options(synchronize_session=False)
        )


def mark_done(db: Session, job_id: uuid.UUID) -> None:
    _finish(db, job_id, JOB_DONE)


def mark_failed(db: Session, job_id: uuid.UUID, error: str) -> None:
    _finish(db, job_id, JOB_FAILED, (error or "unknown error")[:MAX_ERROR_CHARS])


def job_counts(db: Session) -> dict[str, int]:
    with db.begin():
        rows = db.execute(select(AssetJob.status, func.count()).group_by(AssetJob.status)).all()
    counts = {JOB_QUEUED: 0, JOB_RUNNING: 0, JOB_DONE: 0, JOB_FAILED: 0}
    for status, total in rows:
        counts[status] = int(total)
    return counts


def _stale_cutoff(stale_after_s: float | None):
    seconds = settings.asset_job_stale_after_s if stale_after_s is None else stale_after_s
    return utc_now_naive() - timedelta(seconds=float(seconds))


def _queued_job(row: AssetJob) -> QueuedJob:
    return QueuedJob(
        id=row.id,
        segment_id=row.segment_id,
        kind=AssetKind(row.kind),
        attempts=int(row.attempts or 0),
        payload=dict(row.payload or {}),
    )


def reclaim_stale(db: Session, stale_after_s: float | None = None) -> list[QueuedJob]:
    """Fail ``running`` jobs whose worker stopped reporting; returns the reclaimed jobs."""
    cutoff = _stale_cutoff(stale_after_s)
    reclaimed: list[QueuedJob] = []
    with db.begin():
        rows = db.execute(
            select(AssetJob)
            .where(AssetJob.status == JOB_RUNNING, AssetJob.updated_at < cutoff)
            .order_by(AssetJob.updated_at.asc())
            .execution_options(populate_existing=True)
        ).scalars().all()
        for row in rows:
            taken = db.execute(
                update(AssetJob)
                .where(AssetJob.id == row.id, AssetJob.status == JOB_RUNNING, AssetJob.updated_at < cutoff)
                .values(status=JOB_FAILED, error="worker stopped before finishing the job", updated_at=utc_now_naive())
                .execution_options(synchronize_session=False)
            ).rowcount
            if taken == 1:
                reclaimed.append(_queued_job(row))
    for job in reclaimed:
        logger.warning("asset job %s reclaimed as stale segment=%s kind=%s", job.id, job.segment_id, job.kind.value)
    return reclaimed


def has_live_job(db: Session, segment_id: uuid.UUID, kind: AssetKind, stale_after_s: float | None = None) -> bool:
    """True while a queued job or a recently active running job covers this asset."""
    cutoff = _stale_cutoff(stale_after_s)
    with db.begin():
        found = db.execute(
            select(AssetJob.id)
            .where(
                AssetJob.segment_id == segment_id,
                AssetJob.kind == kind.value,
                or_(
                    AssetJob.status == JOB_QUEUED,
                    and_(AssetJob.status == JOB_RUNNING, AssetJob.updated_at >= cutoff),
                ),
            )
            .limit(1)
        ).first()
    return found is not None
