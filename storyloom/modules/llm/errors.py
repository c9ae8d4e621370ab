from __future__ import annotations


class ProviderError(RuntimeError):
    """Raised when an AI provider call fails or returns an unusable response."""

    def __init__(self, message: str, *, error_kind: str, provider: str = ""):
        super().__init__(message)
        self.error_kind = str(error_kind)
        self.provider = provider


class ProviderTimeoutError(ProviderError):
    """Raised when an AI provider call exceeds its time budget."""

    def __init__(self, message: str, *, provider: str = ""):
        super().__init__(message, error_kind=ERROR_TIMEOUT, provider=provider)


class NarrativeParseError(ValueError):
    """Raised when segment text or choices cannot be extracted from a response."""

    def __init__(self, message: str, *, error_kind: str, raw_snippet: str | None = None):
        super().__init__(message)
        self.error_kind = str(error_kind)
        self.raw_snippet = raw_snippet


ERROR_TIMEOUT = "PROVIDER_TIMEOUT"
ERROR_NETWORK = "PROVIDER_NETWORK"
ERROR_HTTP_STATUS = "PROVIDER_HTTP_STATUS"
ERROR_JSON_PARSE = "SEGMENT_JSON_PARSE"
ERROR_SCHEMA_VALIDATE = "SEGMENT_SCHEMA_VALIDATE"
ERROR_NO_CHOICES = "SEGMENT_NO_CHOICES"
