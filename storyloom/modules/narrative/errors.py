from __future__ import annotations

from storyloom.errors import (
    AppError,
    ExternalServiceError,
    InsufficientCreditsError,
    ResourceConflictError,
    ServiceTimeoutError,
)
from storyloom.modules.llm.errors import NarrativeParseError, ProviderError, ProviderTimeoutError
from storyloom.modules.migration.controller import BothBackendsFailedError
from storyloom.modules.stories import errors as story_errors


class InsufficientBalanceError(RuntimeError):
    def __init__(self, required: int, balance: int):
        super().__init__(f"story requires {required} credits, balance is {balance}")
        self.required = required
        self.balance = balance


class IdempotencyKeyRefundedError(RuntimeError):
    """Raised when a replayed key belongs to a charge that was refunded."""


class IdempotencyKeyInFlightError(RuntimeError):
    """Raised when the charge for a key already belongs to a request that has not finished."""


def _timed_out(exc: BothBackendsFailedError) -> bool:
    return isinstance(exc.next_gen_error, ProviderTimeoutError) and isinstance(exc.legacy_error, ProviderTimeoutError)


def as_app_error(exc: Exception) -> AppError:
    if isinstance(exc, InsufficientBalanceError):
        return InsufficientCreditsError(
            "Not enough credits for this story",
            details={"required": exc.required, "balance": exc.balance},
        )
    if isinstance(exc, IdempotencyKeyRefundedError):
        return ResourceConflictError(str(exc), code="IDEMPOTENCY_KEY_REUSED")
    if isinstance(exc, IdempotencyKeyInFlightError):
        return ResourceConflictError(str(exc), code="IDEMPOTENCY_KEY_IN_FLIGHT")
    if isinstance(exc, ProviderTimeoutError) or (isinstance(exc, BothBackendsFailedError) and _timed_out(exc)):
        return ServiceTimeoutError("Story generation timed out", details={"reason": str(exc)})
    if isinstance(exc, BothBackendsFailedError):
        return ExternalServiceError("Story generation failed", details={"reason": str(exc)})
    if isinstance(exc, (ProviderError, NarrativeParseError)):
        return ExternalServiceError("Story generation failed", details={"reason": exc.error_kind})
    return story_errors.as_app_error(exc)


HANDLED_ERRORS: tuple[type[Exception], ...] = (
    InsufficientBalanceError,
    IdempotencyKeyRefundedError,
    IdempotencyKeyInFlightError,
    ProviderError,
    NarrativeParseError,
    BothBackendsFailedError,
    story_errors.StoryNotFoundError,
    story_errors.StoryAccessDeniedError,
    story_errors.StoryCompletedError,
    story_errors.InvalidChoiceError,
    story_errors.PositionConflictError,
)
