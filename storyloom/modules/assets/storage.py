from __future__ import annotations

import logging
import uuid
from pathlib import Path

from storyloom.config import settings
from storyloom.utils.time import utc_now_aware

logger = logging.getLogger(__name__)


class AssetStorage:
    """Writes generated media under a local root served as static files."""

    def __init__(self, root_dir: str | Path, public_base_url: str):
        self.root_dir = Path(root_dir)
        self.public_base_url = public_base_url.rstrip("/")

    def _write(self, relative: str, data: bytes) -> str:
        target = self.root_dir / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.info("stored asset %s (%d bytes)", relative, len(data))
        return f"{self.public_base_url}/{relative}"

    @staticmethod
    def _stamp() -> int:
        return int(utc_now_aware().timestamp() * 1000)

    def save_image(self, story_id: uuid.UUID, segment_id: uuid.UUID, data: bytes) -> str:
        return self._write(f"story-images/{story_id}/{segment_id}-{self._stamp()}.png", data)

    def save_audio(self, story_id: uuid.UUID, segment_id: uuid.UUID, data: bytes) -> str:
        return self._write(f"story-audio/{story_id}/{segment_id}-{self._stamp()}.mp3", data)


def get_asset_storage() -> AssetStorage:
    return AssetStorage(settings.asset_storage_dir, settings.asset_public_base_url)
