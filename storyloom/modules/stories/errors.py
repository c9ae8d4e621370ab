from __future__ import annotations

from storyloom.errors import (
    AppError,
    ResourceConflictError,
    ResourceForbiddenError,
    ResourceNotFoundError,
    ValidationFailedError,
)


class StoryNotFoundError(LookupError):
    """Raised when a story or segment id does not resolve."""


class StoryAccessDeniedError(PermissionError):
    """Raised when the caller does not own the story."""


class PositionConflictError(RuntimeError):
    """Raised when a segment slot is already taken or could not be allocated after retrying."""


class StoryCompletedError(RuntimeError):
    """Raised when appending after a terminal segment."""


class InvalidChoiceError(ValueError):
    """Raised when a choice index does not exist on the parent segment."""


def as_app_error(exc: Exception) -> AppError:
    if isinstance(exc, StoryNotFoundError):
        return ResourceNotFoundError(str(exc))
    if isinstance(exc, StoryAccessDeniedError):
        return ResourceForbiddenError("You do not have access to this story")
    if isinstance(exc, StoryCompletedError):
        return ResourceConflictError(str(exc), code="STORY_COMPLETED")
    if isinstance(exc, InvalidChoiceError):
        return ValidationFailedError(str(exc), details={"field": "choiceIndex"})
    if isinstance(exc, PositionConflictError):
        return ResourceConflictError(str(exc))
    raise TypeError(f"no API error mapping for {exc.__class__.__name__}") from exc
