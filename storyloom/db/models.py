import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from storyloom.db.base import Base
from storyloom.db.types import GUID, JSONType
from storyloom.utils.time import utc_now_naive


def utcnow() -> datetime:
    return utc_now_naive()


class Story(Base):
    __tablename__ = "stories"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(Text, default="")
    story_mode: Mapped[str] = mapped_column(String(64), index=True)
    target_age: Mapped[str] = mapped_column(String(16), default="7-9")
    story_length: Mapped[str] = mapped_column(String(16), default="medium")
    story_params: Mapped[dict] = mapped_column(JSONType, default=dict)
    prepaid_segments: Mapped[int] = mapped_column(Integer, default=0)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    segment_count: Mapped[int] = mapped_column(Integer, default=0)
    audio_generation_status: Mapped[str] = mapped_column(String(16), default="not_started")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class StorySegment(Base):
    __tablename__ = "story_segments"
    __table_args__ = (
        UniqueConstraint("story_id", "position", name="uq_story_segments_story_position"),
        Index(
            "uq_story_segments_single_root",
            "story_id",
            unique=True,
            sqlite_where=text("parent_segment_id IS NULL"),
            postgresql_where=text("parent_segment_id IS NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    story_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("stories.id", ondelete="CASCADE"), index=True)
    position: Mapped[int] = mapped_column(Integer)
    parent_segment_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), ForeignKey("story_segments.id"), nullable=True)
    content: Mapped[str] = mapped_column(Text)
    word_count: Mapped[int] = mapped_column(Integer, default=0)
    choices: Mapped[list] = mapped_column(JSONType, default=list)
    is_end: Mapped[bool] = mapped_column(Boolean, default=False)
    generated_by: Mapped[str] = mapped_column(String(64), default="")
    image_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_status: Mapped[str] = mapped_column(String(16), default="not_started")
    audio_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    audio_status: Mapped[str] = mapped_column(String(16), default="not_started")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)


class CreditAccount(Base):
    __tablename__ = "credit_accounts"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    sequence: Mapped[int] = mapped_column(Integer, default=0)
    lifetime_earned: Mapped[int] = mapped_column(Integer, default=0)
    lifetime_spent: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"
    __table_args__ = (
        UniqueConstraint("account_id", "reason", "reference_id", name="uq_credit_transactions_account_reason_reference"),
        UniqueConstraint("account_id", "sequence", name="uq_credit_transactions_account_sequence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    account_id: Mapped[str] = mapped_column(String(64), ForeignKey("credit_accounts.user_id"), index=True)
    sequence: Mapped[int] = mapped_column(Integer)
    amount: Mapped[int] = mapped_column(Integer)
    reason: Mapped[str] = mapped_column(String(64))
    reference_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)


class AssetJob(Base):
    __tablename__ = "asset_jobs"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    segment_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("story_segments.id", ondelete="CASCADE"), index=True)
    kind: Mapped[str] = mapped_column(String(16))
    status: Mapped[str] = mapped_column(String(16), default="queued")
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


Index("ix_story_segments_story_position", StorySegment.story_id, StorySegment.position)
Index("ix_asset_jobs_status_created", AssetJob.status, AssetJob.created_at)
