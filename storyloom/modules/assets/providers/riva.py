import base64

import httpx

from storyloom.modules.assets.providers.base import SpeechProvider


class RivaSpeechProvider(SpeechProvider):
    """RIVA-style ``/tts`` endpoint returning mp3 bytes or base64 JSON."""

    def __init__(self, api_key: str, base_url: str, *, name: str = "riva"):
        self.name = name
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    async def synthesize(self, request: dict, *, timeout_s: float) -> bytes:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["authorization"] = f"Bearer {self.api_key}"
        async with httpx.AsyncClient(timeout=httpx.Timeout(timeout=timeout_s)) as client:
            resp = await client.post(f"{self.base_url}/tts", headers=headers, json=request)
            resp.raise_for_status()
            if resp.headers.get("content-type", "").startswith("application/json"):
                encoded = resp.json().get("audio") or ""
                if not encoded:
                    raise ValueError("speech response carried no audio")
                return base64.b64decode(encoded)
            return resp.content
