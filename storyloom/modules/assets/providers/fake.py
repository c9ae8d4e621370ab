from storyloom.modules.assets.providers.base import ImageProvider, RenderedImage, SpeechProvider

# Smallest valid PNG: one transparent pixel.
FAKE_PNG = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c6360000002000154a24f5d0000000049454e44ae426082"
)
FAKE_MP3 = b"ID3\x03\x00\x00\x00\x00\x00\x00fake-narration"


class FakeImageProvider(ImageProvider):
    def __init__(self, name: str = "fake-image", *, as_url: bool = False):
        self.name = name
        self.as_url = as_url
        self.fail_render = False
        self.requests: list[dict] = []

    async def render(self, request: dict, *, timeout_s: float) -> RenderedImage:
        self.requests.append(dict(request))
        if self.fail_render:
            raise RuntimeError(f"{self.name} render failure")
        if self.as_url:
            return RenderedImage(url=f"https://images.example.test/{len(self.requests)}.png")
        return RenderedImage(data=FAKE_PNG)


class FakeSpeechProvider(SpeechProvider):
    def __init__(self, name: str = "fake-speech"):
        self.name = name
        self.fail_synthesize = False
        self.requests: list[dict] = []

    async def synthesize(self, request: dict, *, timeout_s: float) -> bytes:
        self.requests.append(dict(request))
        if self.fail_synthesize:
            raise RuntimeError(f"{self.name} synthesize failure")
        return FAKE_MP3
