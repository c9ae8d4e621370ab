from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RenderedImage:
    url: str | None = None
    data: bytes | None = None


class ImageProvider(ABC):
    name: str

    @abstractmethod
    async def render(self, request: dict, *, timeout_s: float) -> RenderedImage:
        pass


class SpeechProvider(ABC):
    name: str

    @abstractmethod
    async def synthesize(self, request: dict, *, timeout_s: float) -> bytes:
        pass
