from storyloom.modules.assets.illustration import (
    CHILDRENS_BOOK_STYLE,
    DEFAULT_ART_STYLE,
    IMAGE_PROMPT_PREFIX,
    NEGATIVE_PROMPT,
    art_style_for,
    build_image_request,
    compact_image_prompt,
)


def test_prompt_uses_head_of_segment_and_genre_style() -> None:
    text = "Luna   the little owl\nwatched the stars. " + "x" * 200
    prompt = compact_image_prompt(text, genre="fantasy")
    head = " ".join(text.split())[:100]
    assert prompt == f"{IMAGE_PROMPT_PREFIX}{head}... Style: whimsical watercolor fantasy art, {CHILDRENS_BOOK_STYLE}"


def test_art_style_override_and_default() -> None:
    assert art_style_for("fantasy", "  paper cut-out collage ") == "paper cut-out collage"
    assert art_style_for("Mystery") == "moody pastel illustration with gentle shadows"
    assert art_style_for("cooking") == DEFAULT_ART_STYLE
    assert art_style_for(None, "  ") == DEFAULT_ART_STYLE


def test_short_segment_is_not_padded() -> None:
    assert compact_image_prompt("A red kite.").startswith(f"{IMAGE_PROMPT_PREFIX}A red kite.... Style: ")


def test_image_request_parameters() -> None:
    request = build_image_request("a prompt")
    assert request == {
        "prompt": "a prompt",
        "negative_prompt": NEGATIVE_PROMPT,
        "width": 1024,
        "height": 1024,
        "num_inference_steps": 30,
        "guidance_scale": 7.5,
    }
