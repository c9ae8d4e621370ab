import base64

import httpx

from storyloom.modules.assets.providers.base import ImageProvider, RenderedImage


class SDXLImageProvider(ImageProvider):
    """Hosted SDXL text-to-image endpoint."""

    def __init__(self, api_key: str, base_url: str, *, name: str = "sdxl"):
        self.name = name
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    async def render(self, request: dict, *, timeout_s: float) -> RenderedImage:
        headers = {
            "authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        async with httpx.AsyncClient(timeout=httpx.Timeout(timeout=timeout_s)) as client:
            resp = await client.post(f"{self.base_url}/text2image", headers=headers, json=request)
            resp.raise_for_status()
            if resp.headers.get("content-type", "").startswith("image/"):
                return RenderedImage(data=resp.content)
            data = resp.json()

        if data.get("image_url"):
            return RenderedImage(url=str(data["image_url"]))
        encoded = data.get("image_data") or data.get("image")
        if encoded:
            return RenderedImage(data=base64.b64decode(encoded))
        raise ValueError("image response carried neither image_url nor image_data")
