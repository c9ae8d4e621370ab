from abc import ABC, abstractmethod


class TextProvider(ABC):
    name: str

    @abstractmethod
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
        pass
