from __future__ import annotations

IMAGE_PROMPT_PREFIX = "Illustration for a children's story segment: "
IMAGE_PROMPT_TEXT_CHARS = 100
CHILDRENS_BOOK_STYLE = "children's book illustration, soft colors, friendly characters, safe for kids"
NEGATIVE_PROMPT = "scary, violent, inappropriate, adult content, ugly, blurry, low quality, distorted, nsfw"

ART_STYLE_BY_GENRE: dict[str, str] = {
    "fantasy": "whimsical watercolor fantasy art",
    "fairy_tale": "classic storybook gouache painting",
    "adventure": "bright adventurous cartoon style",
    "sci_fi": "playful retro-futuristic digital art",
    "science_fiction": "playful retro-futuristic digital art",
    "mystery": "moody pastel illustration with gentle shadows",
    "bedtime": "dreamy soft-focus pastel illustration",
    "educational": "clean colorful picture-book style",
    "animals": "cuddly hand-drawn animal illustration",
}
DEFAULT_ART_STYLE = "colorful picture-book illustration"


def art_style_for(genre: str | None, override: str | None = None) -> str:
    if override and override.strip():
        return override.strip()
    return ART_STYLE_BY_GENRE.get(str(genre or "").strip().lower(), DEFAULT_ART_STYLE)


def compact_image_prompt(segment_text: str, *, genre: str | None = None, art_style: str | None = None) -> str:
    """Short prompt from the head of the segment text plus style hints."""
    head = " ".join(str(segment_text or "").split())[:IMAGE_PROMPT_TEXT_CHARS]
    return f"{IMAGE_PROMPT_PREFIX}{head}... Style: {art_style_for(genre, art_style)}, {CHILDRENS_BOOK_STYLE}"


def build_image_request(prompt: str) -> dict:
    return {
        "prompt": prompt,
        "negative_prompt": NEGATIVE_PROMPT,
        "width": 1024,
        "height": 1024,
        "num_inference_steps": 30,
        "guidance_scale": 7.5,
    }
