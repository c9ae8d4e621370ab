from __future__ import annotations

from dataclasses import dataclass

SYSTEM_PROMPT = (
    "You are an expert children's story writer. You create engaging, age-appropriate stories with "
    "positive messages.\n\n"
    "CRITICAL REQUIREMENTS:\n"
    "- Always respond with valid JSON in the exact format requested\n"
    "- Write story segments that lead naturally to the 3 choices you provide\n"
    "- Make sure choices directly relate to what happens in your story segment\n"
    "- Keep choices short (4-8 words) and easy for children to understand\n"
    "- Each choice must offer a different story direction"
)
LEGACY_JSON_INSTRUCTION = (
    "Respond with valid JSON in this exact format:\n"
    '{\n  "story_text": "Your story here",\n  "choices": ["first choice", "second choice", "third choice"]\n}'
)
ENDING_INSTRUCTION = (
    "This is the final part: conclude the story with a warm, satisfying ending that resolves the "
    "adventure. Return an empty choices list."
)
JSON_STRUCTURE_OVERHEAD = 200
_TOKENS_BY_AGE = {"4-6": 300, "7-9": 400}
_DEFAULT_TOKENS = 500

STORY_SEGMENT_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "story_text": {
            "type": "string",
            "description": "The story segment text (2-3 engaging paragraphs that advance the story)",
        },
        "choices": {
            "type": "array",
            "description": "Choices that directly relate to the story segment",
            "items": {"type": "string", "description": "A choice option (4-8 words maximum, child-friendly)"},
            "maxItems": 3,
        },
    },
    "required": ["story_text", "choices"],
    "additionalProperties": False,
}


@dataclass(frozen=True, slots=True)
class PromptEnvelope:
    system_text: str
    user_text: str
    age_group: str
    expect_end: bool = False

    def to_messages(self, *, legacy: bool = False) -> list[dict]:
        user_text = self.user_text
        if legacy:
            user_text = f"{user_text}\n\n{LEGACY_JSON_INSTRUCTION}"
        return [
            {"role": "system", "content": self.system_text},
            {"role": "user", "content": user_text},
        ]

    @property
    def max_tokens(self) -> int:
        return _TOKENS_BY_AGE.get(self.age_group, _DEFAULT_TOKENS) + JSON_STRUCTURE_OVERHEAD


def structured_response_format() -> dict:
    return {
        "type": "json_schema",
        "json_schema": {
            "name": "story_segment_response",
            "description": "A story segment with up to 3 choices",
            "schema": STORY_SEGMENT_SCHEMA,
            "strict": True,
        },
    }


def _requirements(age_group: str, *, expect_end: bool) -> str:
    lines = [
        "Story content requirements:",
        "- Write 2-3 engaging paragraphs with vivid, sensory descriptions children can imagine",
        "- Show the character actively doing something specific",
        f"- Keep language age-appropriate for {age_group} year olds",
    ]
    if expect_end:
        lines.append(f"- {ENDING_INSTRUCTION}")
    else:
        lines += [
            "- End with anticipation, not resolution",
            "",
            "Choice requirements:",
            "- Provide exactly 3 distinct choices of 4-8 words each",
            "- Each choice must directly reference something from your story text",
            "- Avoid generic choices such as 'Be brave' or 'Make a decision'",
        ]
    return "\n".join(lines)


def _character_line(characters: list[dict]) -> str:
    parts = []
    for character in characters:
        name = str(character.get("name") or "").strip()
        if not name:
            continue
        description = str(character.get("description") or "").strip()
        parts.append(f"{name} ({description})" if description else name)
    return ", ".join(parts)


def build_opening_prompt(
    *,
    title: str,
    description: str,
    genre: str,
    age_group: str,
    details: dict,
    expect_end: bool = False,
) -> PromptEnvelope:
    lines = [
        f"Create the opening segment of a {genre.replace('_', ' ')} story titled \"{title}\" "
        f"for children aged {age_group}.",
    ]
    if description:
        lines.append(f"Story description: {description}")
    labelled = (
        ("Theme", details.get("theme")),
        ("Setting", details.get("setting")),
        ("Characters", _character_line(details.get("characters") or [])),
        ("Conflict", details.get("conflict")),
        ("Quest", details.get("quest")),
        ("Moral lesson", details.get("moral_lesson")),
    )
    lines += [f"{label}: {value}" for label, value in labelled if value]
    if details.get("words_per_chapter"):
        lines.append(f"Aim for about {details['words_per_chapter']} words.")
    lines += ["", _requirements(age_group, expect_end=expect_end)]
    return PromptEnvelope(
        system_text=SYSTEM_PROMPT,
        user_text="\n".join(lines),
        age_group=age_group,
        expect_end=expect_end,
    )


def build_continuation_prompt(
    *,
    title: str,
    genre: str,
    age_group: str,
    details: dict,
    previous_text: str,
    chosen_text: str | None,
    expect_end: bool = False,
) -> PromptEnvelope:
    lines = [
        f"Continue the {genre.replace('_', ' ')} story \"{title}\" for children aged {age_group}.",
        f"Previous segment: {previous_text}",
    ]
    if chosen_text:
        lines.append(f"User chose: {chosen_text}")
    if details.get("moral_lesson"):
        lines.append(f"Keep the moral lesson in mind: {details['moral_lesson']}")
    if details.get("words_per_chapter"):
        lines.append(f"Aim for about {details['words_per_chapter']} words.")
    lines += ["", _requirements(age_group, expect_end=expect_end)]
    return PromptEnvelope(
        system_text=SYSTEM_PROMPT,
        user_text="\n".join(lines),
        age_group=age_group,
        expect_end=expect_end,
    )
