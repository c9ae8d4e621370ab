import json
import time

from storyloom.modules.llm.base import TextProvider

_FAKE_CHOICES = (
    "Follow the glowing fireflies",
    "Knock on the mossy door",
    "Climb the tall silver tree",
)


class FakeTextProvider(TextProvider):
    """Deterministic in-process backend for tests and local demos."""

    def __init__(self, name: str = "fake", *, structured: bool = True):
        self.name = name
        self.structured = structured
        self.generate_calls = 0
        self.fail_generate = False
        self.last_messages: list[dict] = []

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
        self.generate_calls += 1
        self.last_messages = list(messages)
        if self.fail_generate:
            raise RuntimeError(f"{self.name} generate failure")

        prompt = "\n".join(str(item.get("content") or "") for item in messages)
        ending = "conclude the story" in prompt.lower()
        story_text = (
            f"[{self.name}] Pip the fox tiptoed through the whispering forest, "
            "where lanterns bobbed between the branches and a friendly owl hooted hello."
        )
        if ending:
            story_text += " At last Pip found the way home, and everyone celebrated together."
        choices = [] if ending else list(_FAKE_CHOICES)

        if self.structured:
            content = json.dumps({"story_text": story_text, "choices": choices})
        else:
            numbered = "\n".join(f"{index}. {text}" for index, text in enumerate(choices, start=1))
            content = f"```json\n{json.dumps({'story_text': story_text, 'choices': choices})}\n```\n{numbered}"

        usage = {
            "provider": self.name,
            "model": model,
            "prompt_tokens": max(1, len(prompt) // 4),
            "completion_tokens": 64,
            "latency_ms": int((time.perf_counter() - started) * 1000),
        }
        return content, usage
