from __future__ import annotations

from typing import Any

from fastapi.testclient import TestClient

STORY_BODY: dict[str, Any] = {
    "title": "Pip and the Lantern Forest",
    "description": "A curious fox looks for the brightest lantern.",
    "genre": "Fantasy",
    "age_group": "7-9",
    "theme": "friendship",
    "setting": "an enchanted forest",
    "characters": [{"name": "Pip", "description": "a curious fox"}, {"name": "Olive"}],
    "conflict": "the lanterns are going dark",
    "quest": "find the lantern keeper",
    "moral_lesson": "helping others makes everyone shine",
    "words_per_chapter": 120,
}


def create_story(client: TestClient, headers: dict[str, str], **overrides: Any):
    body = dict(STORY_BODY)
    body.update(overrides)
    return client.post("/create-story", json=body, headers=headers)


def create_story_ok(client: TestClient, headers: dict[str, str], **overrides: Any) -> dict[str, Any]:
    resp = create_story(client, headers, **overrides)
    assert resp.status_code == 200, resp.text
    return resp.json()
