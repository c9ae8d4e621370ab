import time

import httpx

from storyloom.modules.llm.base import TextProvider


class ChatCompletionsProvider(TextProvider):
    """OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        *,
        name: str = "chat_completions",
        temperature: float = 0.7,
    ):
        self.name = name
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.temperature = float(temperature)

    async def generate(
        self,
        messages: list[dict],
        *,
        request_id: str,
        timeout_s: float,
        model: str,
        connect_timeout_s: float | None = None,
        max_tokens: int | None = None,
        response_format: dict | None = None,
    ) -> tuple[str, dict]:
        started = time.perf_counter()
        headers = {
            "authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Request-Id": request_id,
        }
        payload: dict = {
            "model": model,
            "messages": messages,
            "temperature": self.temperature,
        }
        if max_tokens is not None and max_tokens > 0:
            payload["max_tokens"] = int(max_tokens)
        if response_format is not None:
            payload["response_format"] = response_format
        timeout = httpx.Timeout(
            timeout=timeout_s,
            connect=connect_timeout_s if connect_timeout_s is not None else timeout_s,
        )
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(f"{self.base_url}/chat/completions", headers=headers, json=payload)
            resp.raise_for_status()
            data = resp.json()

        content = (data.get("choices") or [{}])[0].get("message", {}).get("content") or ""
        usage_raw = data.get("usage") or {}
        usage = {
            "provider": self.name,
            "model": model,
            "prompt_tokens": int(usage_raw.get("prompt_tokens", 0) or 0),
            "completion_tokens": int(usage_raw.get("completion_tokens", 0) or 0),
            "latency_ms": int((time.perf_counter() - started) * 1000),
        }
        return str(content), usage
