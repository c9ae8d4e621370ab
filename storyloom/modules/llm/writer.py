from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable

import httpx

from storyloom.config import settings
from storyloom.modules.llm.base import TextProvider
from storyloom.modules.llm.errors import (
    ERROR_HTTP_STATUS,
    ERROR_NETWORK,
    NarrativeParseError,
    ProviderError,
    ProviderTimeoutError,
)
from storyloom.modules.llm.prompts import PromptEnvelope, structured_response_format
from storyloom.modules.llm.providers.chat_completions import ChatCompletionsProvider
from storyloom.modules.llm.providers.fake import FakeTextProvider
from storyloom.modules.llm.segments import GeneratedSegment, parse_legacy_segment, parse_structured_segment
from storyloom.modules.migration.controller import LEGACY_PROVIDER_LABEL, NEXT_GEN_PROVIDER_LABEL

logger = logging.getLogger(__name__)

NEXT_GEN = "next_gen"
LEGACY = "legacy"


def build_text_providers() -> dict[str, TextProvider]:
    if settings.text_provider == "fake":
        return {
            NEXT_GEN: FakeTextProvider("fake-next-gen"),
            LEGACY: FakeTextProvider("fake-legacy", structured=False),
        }
    providers: dict[str, TextProvider] = {}
    if settings.nextgen_api_key:
        providers[NEXT_GEN] = ChatCompletionsProvider(
            settings.nextgen_api_key,
            settings.nextgen_base_url,
            name="openai",
            temperature=settings.text_temperature,
        )
    if settings.legacy_api_key:
        providers[LEGACY] = ChatCompletionsProvider(
            settings.legacy_api_key,
            settings.legacy_base_url,
            name="ovh",
            temperature=settings.text_temperature,
        )
    return providers


class SegmentWriter:
    """Runs one text backend call with bounded timeouts and normalizes the reply."""

    def __init__(
        self,
        providers: dict[str, TextProvider],
        *,
        nextgen_model: str | None = None,
        legacy_model: str | None = None,
        total_timeout_s: float | None = None,
        read_timeout_s: float | None = None,
        connect_timeout_s: float | None = None,
    ):
        self.providers = providers
        self.nextgen_model = nextgen_model or settings.nextgen_model
        self.legacy_model = legacy_model or settings.legacy_model
        self.total_timeout_s = float(total_timeout_s or settings.ai_total_timeout_s)
        self.read_timeout_s = float(read_timeout_s or settings.ai_read_timeout_s)
        self.connect_timeout_s = float(connect_timeout_s or settings.ai_connect_timeout_s)

    def _run(self, coro):
        return asyncio.run(coro)

    def _provider(self, backend: str) -> TextProvider:
        provider = self.providers.get(backend)
        if provider is None:
            raise ProviderError(f"{backend} text backend is not configured", error_kind=ERROR_NETWORK, provider=backend)
        return provider

    async def _call(self, backend: str, envelope: PromptEnvelope, *, request_id: str) -> tuple[str, dict]:
        provider = self._provider(backend)
        legacy = backend == LEGACY
        call = provider.generate(
            envelope.to_messages(legacy=legacy),
            request_id=request_id,
            timeout_s=self.read_timeout_s,
            model=self.legacy_model if legacy else self.nextgen_model,
            connect_timeout_s=self.connect_timeout_s,
            max_tokens=envelope.max_tokens,
            response_format={"type": "json_object"} if legacy else structured_response_format(),
        )
        try:
            return await asyncio.wait_for(call, timeout=self.total_timeout_s)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise ProviderTimeoutError(
                f"{provider.name} timed out after {self.total_timeout_s:.1f}s", provider=provider.name
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                f"{provider.name} API error: {exc.response.status_code}",
                error_kind=ERROR_HTTP_STATUS,
                provider=provider.name,
            ) from exc
        except ProviderError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ProviderError(f"{provider.name} call failed: {exc}", error_kind=ERROR_NETWORK, provider=provider.name) from exc

    def write(self, backend: str, envelope: PromptEnvelope, *, request_id: str | None = None) -> GeneratedSegment:
        request_id = request_id or uuid.uuid4().hex
        raw, usage = self._run(self._call(backend, envelope, request_id=request_id))
        label = LEGACY_PROVIDER_LABEL if backend == LEGACY else NEXT_GEN_PROVIDER_LABEL
        parse = parse_legacy_segment if backend == LEGACY else parse_structured_segment
        try:
            segment = parse(raw, provider=label, expect_end=envelope.expect_end)
        except NarrativeParseError as exc:
            logger.warning("%s response unusable kind=%s: %s", label, exc.error_kind, exc)
            raise
        return GeneratedSegment(
            text=segment.text,
            choices=segment.choices,
            is_end=segment.is_end,
            provider=label,
            usage=usage,
        )

    def calls_for(
        self, envelope: PromptEnvelope, *, request_id: str | None = None
    ) -> tuple[Callable[[], GeneratedSegment], Callable[[], GeneratedSegment]]:
        request_id = request_id or uuid.uuid4().hex
        return (
            lambda: self.write(LEGACY, envelope, request_id=request_id),
            lambda: self.write(NEXT_GEN, envelope, request_id=request_id),
        )


def get_segment_writer() -> SegmentWriter:
    return SegmentWriter(build_text_providers())
