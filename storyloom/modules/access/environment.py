from __future__ import annotations

import logging
from dataclasses import dataclass, field

from storyloom.config import Settings, settings

logger = logging.getLogger(__name__)

CAPABILITY_SETTINGS: dict[str, tuple[str, ...]] = {
    "identity": ("identity_provider_url", "jwt_secret"),
    "image_generation": ("image_base_url", "image_api_key"),
    "speech": ("tts_base_url", "tts_api_key"),
    "storage": ("asset_storage_dir", "asset_public_base_url"),
}
FAKE_PROVIDER = "fake"


@dataclass(frozen=True, slots=True)
class EnvironmentReport:
    ok: bool
    missing: list[str] = field(default_factory=list)


def _is_configured(value: object) -> bool:
    text = str(value or "").strip()
    return bool(text) and "placeholder" not in text.lower()


def _missing_for(capability: str, config: Settings) -> list[str]:
    if capability == "text_generation":
        if config.text_provider == FAKE_PROVIDER:
            return []
        nextgen_ready = _is_configured(config.nextgen_base_url) and _is_configured(config.nextgen_api_key)
        legacy_ready = _is_configured(config.legacy_base_url) and _is_configured(config.legacy_api_key)
        if nextgen_ready or legacy_ready:
            return []
        return ["nextgen_api_key|legacy_api_key"]
    if capability == "image_generation" and config.image_provider == FAKE_PROVIDER:
        return []
    if capability == "speech" and config.tts_provider == FAKE_PROVIDER:
        return []

    names = CAPABILITY_SETTINGS.get(capability)
    if names is None:
        raise ValueError(f"unknown capability: {capability}")
    return [name for name in names if not _is_configured(getattr(config, name, ""))]


def validate_environment(required_capabilities: list[str] | tuple[str, ...], config: Settings | None = None) -> EnvironmentReport:
    config = config or settings
    missing: list[str] = []
    for capability in required_capabilities:
        for name in _missing_for(capability, config):
            if name not in missing:
                missing.append(name)
    if missing:
        logger.error("service misconfigured capabilities=%s missing=%s", list(required_capabilities), missing)
    return EnvironmentReport(ok=not missing, missing=missing)
