"""Story orchestration: charge, generate through the migration controller, persist, enqueue assets.

Every charge made before a generation attempt is reversed with a
compensating ledger credit when the attempt or its persistence fails.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from storyloom.config import settings
from storyloom.modules.assets import queue
from storyloom.modules.assets.illustration import compact_image_prompt
from storyloom.modules.assets.status import AssetKind
from storyloom.modules.credits import ledger
from storyloom.modules.credits.pricing import CostQuote, length_for_words, quote
from storyloom.modules.llm.prompts import PromptEnvelope, build_continuation_prompt, build_opening_prompt
from storyloom.modules.llm.segments import GeneratedSegment
from storyloom.modules.llm.writer import SegmentWriter
from storyloom.modules.migration.controller import MigrationController, MigrationResult
from storyloom.modules.narrative.errors import (
    IdempotencyKeyInFlightError,
    IdempotencyKeyRefundedError,
    InsufficientBalanceError,
)
from storyloom.modules.stories import store
from storyloom.modules.stories.errors import InvalidChoiceError, StoryCompletedError, StoryNotFoundError
from storyloom.modules.stories.normalize import normalize_age_group, normalize_genre

logger = logging.getLogger(__name__)

STORY_CREATION_REASON = "story_creation"
SEGMENT_GENERATION_REASON = "segment_generation"
REFUND_SUFFIX = "_refund"
OPERATION_STORY_GENERATION = "story_generation"
IDEMPOTENCY_NAMESPACE = uuid.UUID("6f1f8a52-61c5-4b4c-9a57-1d0c0f3b6a10")


@dataclass(frozen=True, slots=True)
class StoryRequest:
    title: str
    genre: str
    age_group: str
    description: str = ""
    target_age: int | None = None
    words_per_chapter: int = 120
    include_audio: bool = False
    details: dict = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CreationResult:
    story: store.StoryRecord
    first_segment: store.SegmentRecord
    cost: CostQuote
    replayed: bool = False
    version_used: str | None = None


@dataclass(frozen=True, slots=True)
class SegmentResult:
    story_id: uuid.UUID
    segment: store.SegmentRecord
    story_completed: bool
    charged: int = 0
    version_used: str | None = None


def idempotent_story_id(user_id: str, key: str) -> uuid.UUID:
    return uuid.uuid5(IDEMPOTENCY_NAMESPACE, f"{user_id}:{key.strip()}")


def _refund(db: Session, user_id: str, amount: int, reason: str, reference_id: str) -> None:
    if amount <= 0:
        return
    ledger.credit(db, user_id, amount, f"{reason}{REFUND_SUFFIX}", reference_id=reference_id)
    logger.info("refunded %d credits user=%s reason=%s ref=%s", amount, user_id, reason, reference_id)


def _charge(db: Session, user_id: str, amount: int, reason: str, reference_id: str) -> None:
    ledger.open_account(db, user_id)
    outcome = ledger.apply_transaction(db, user_id=user_id, amount=-amount, reason=reason, reference_id=reference_id)
    if outcome is ledger.LedgerOutcome.INSUFFICIENT_FUNDS:
        raise InsufficientBalanceError(amount, ledger.get_balance(db, user_id))
    if outcome is ledger.LedgerOutcome.DUPLICATE:
        raise IdempotencyKeyInFlightError("This Idempotency-Key is already being processed by another request")


def _generate(
    controller: MigrationController,
    writer: SegmentWriter,
    envelope: PromptEnvelope,
    user_id: str,
) -> MigrationResult[GeneratedSegment]:
    legacy_call, next_gen_call = writer.calls_for(envelope)
    return controller.execute(OPERATION_STORY_GENERATION, legacy_call, next_gen_call, user_id=user_id)


def _enqueue_assets(db: Session, segment_id: uuid.UUID, *, include_audio: bool) -> None:
    # The segment is already committed; a queue failure only loses the illustration.
    try:
        queue.enqueue(db, segment_id, AssetKind.IMAGE)
        if include_audio:
            queue.enqueue(db, segment_id, AssetKind.AUDIO)
    except SQLAlchemyError:
        logger.exception("could not enqueue assets for segment %s", segment_id)


def _existing_story(db: Session, story_id: uuid.UUID, user: dict) -> store.StoryRecord | None:
    try:
        return store.get_story(db, story_id, user)
    except StoryNotFoundError:
        return None


def _replay(story: store.StoryRecord, cost: CostQuote) -> CreationResult:
    logger.info("idempotent replay story=%s", story.id)
    return CreationResult(story=story, first_segment=story.segments[0], cost=cost, replayed=True)


def create_story(
    db: Session,
    *,
    user: dict,
    request: StoryRequest,
    controller: MigrationController,
    writer: SegmentWriter,
    idempotency_key: str | None = None,
) -> CreationResult:
    user_id = str(user["id"])
    story_length = length_for_words(int(request.words_per_chapter))
    cost = quote(story_length, include_images=True, include_audio=request.include_audio)

    story_id = uuid.uuid4()
    if idempotency_key:
        story_id = idempotent_story_id(user_id, idempotency_key)
        existing = _existing_story(db, story_id, user)
        if existing is not None:
            return _replay(existing, cost)
        if ledger.has_transaction(db, user_id, f"{STORY_CREATION_REASON}{REFUND_SUFFIX}", str(story_id)):
            raise IdempotencyKeyRefundedError("This Idempotency-Key was used for a failed request; send a new key")

    reference = str(story_id)
    try:
        _charge(db, user_id, cost.total_cost, STORY_CREATION_REASON, reference)
    except IdempotencyKeyInFlightError:
        existing = _existing_story(db, story_id, user)
        if existing is not None:
            return _replay(existing, cost)
        raise

    genre = normalize_genre(request.genre)
    age_group = normalize_age_group(request.age_group, request.target_age)
    details = dict(request.details)
    details.update({"words_per_chapter": int(request.words_per_chapter), "include_audio": request.include_audio})
    envelope = build_opening_prompt(
        title=request.title,
        description=request.description,
        genre=genre,
        age_group=age_group,
        details=details,
        expect_end=settings.story_max_segments <= 1,
    )
    try:
        outcome = _generate(controller, writer, envelope, user_id)
    except Exception:
        _refund(db, user_id, cost.total_cost, STORY_CREATION_REASON, reference)
        raise

    generated = outcome.result
    params = store.StoryParams(
        title=request.title,
        genre=genre,
        age_group=age_group,
        description=request.description,
        target_age=request.target_age,
        story_length=story_length,
        prepaid_segments=cost.chapters,
        details=details,
    )
    draft = store.SegmentDraft(
        content=generated.text,
        choices=[] if envelope.expect_end else list(generated.choices),
        is_end=envelope.expect_end,
        image_prompt=compact_image_prompt(generated.text, genre=genre, art_style=details.get("art_style")),
        generated_by=outcome.provider_label,
    )
    try:
        with db.begin():
            store.create_story(db, user_id, params, story_id=story_id)
            first_segment = store.append_segment_in_transaction(db, story_id, user, draft)
    except IntegrityError:
        existing = _existing_story(db, story_id, user) if idempotency_key else None
        if existing is not None:
            return _replay(existing, cost)
        _refund(db, user_id, cost.total_cost, STORY_CREATION_REASON, reference)
        raise
    except Exception:
        _refund(db, user_id, cost.total_cost, STORY_CREATION_REASON, reference)
        raise

    _enqueue_assets(db, first_segment.id, include_audio=request.include_audio)
    story = store.get_story(db, story_id, user)
    logger.info(
        "story created id=%s user=%s cost=%d version=%s",
        story_id,
        user_id,
        cost.total_cost,
        outcome.version_used.value,
    )
    return CreationResult(
        story=story,
        first_segment=first_segment,
        cost=cost,
        version_used=outcome.version_used.value,
    )


def generate_segment(
    db: Session,
    *,
    user: dict,
    story_id: uuid.UUID,
    controller: MigrationController,
    writer: SegmentWriter,
    choice_index: int | None = None,
    conclude: bool = False,
) -> SegmentResult:
    """Append the next segment after the latest one.

    Segments past the prepaid chapter count cost ``extra_segment_cost``;
    ``conclude`` writes a free terminal segment instead.
    """
    user_id = str(user["id"])
    story = store.get_story(db, story_id, user)
    if story.is_completed or not story.segments or story.segments[-1].is_end:
        raise StoryCompletedError(f"story {story_id} already ended")

    parent = story.segments[-1]
    chosen_text = None
    if choice_index is not None:
        if choice_index < 0 or choice_index >= len(parent.choices):
            raise InvalidChoiceError(
                f"choiceIndex {choice_index} is out of range; segment has {len(parent.choices)} choices"
            )
        chosen_text = str(parent.choices[choice_index].get("text") or "")

    position = len(story.segments) + 1
    expect_end = conclude or position >= settings.story_max_segments
    segment_id = uuid.uuid4()
    reference = str(segment_id)
    charge = 0
    if not conclude and position > story.prepaid_segments:
        charge = int(settings.extra_segment_cost)
        if charge > 0:
            _charge(db, user_id, charge, SEGMENT_GENERATION_REASON, reference)

    envelope = build_continuation_prompt(
        title=story.title,
        genre=story.genre,
        age_group=story.age_group,
        details=story.details,
        previous_text=parent.content,
        chosen_text=chosen_text,
        expect_end=expect_end,
    )
    try:
        outcome = _generate(controller, writer, envelope, user_id)
        generated = outcome.result
        draft = store.SegmentDraft(
            content=generated.text,
            choices=[] if expect_end else list(generated.choices),
            is_end=expect_end,
            parent_segment_id=parent.id,
            choice_index=choice_index,
            image_prompt=compact_image_prompt(generated.text, genre=story.genre, art_style=story.details.get("art_style")),
            generated_by=outcome.provider_label,
            segment_id=segment_id,
            position=position,
        )
        segment = store.append_segment(db, story_id, user, draft)
    except Exception:
        _refund(db, user_id, charge, SEGMENT_GENERATION_REASON, reference)
        raise

    _enqueue_assets(db, segment.id, include_audio=bool(story.details.get("include_audio")))
    logger.info(
        "segment appended story=%s position=%d end=%s charged=%d version=%s",
        story_id,
        segment.position,
        segment.is_end,
        charge,
        outcome.version_used.value,
    )
    return SegmentResult(
        story_id=story_id,
        segment=segment,
        story_completed=segment.is_end,
        charged=charge,
        version_used=outcome.version_used.value,
    )


def generate_ending(
    db: Session,
    *,
    user: dict,
    story_id: uuid.UUID,
    controller: MigrationController,
    writer: SegmentWriter,
    choice_index: int | None = None,
) -> SegmentResult:
    return generate_segment(
        db,
        user=user,
        story_id=story_id,
        controller=controller,
        writer=writer,
        choice_index=choice_index,
        conclude=True,
    )
