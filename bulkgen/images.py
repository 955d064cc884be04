"""
Image Generation Client
=======================

Turn one (prompt, aspect ratio, style) triple into one image reference using
the OpenAI-compatible image gateway.

An image reference is either the URL the gateway hands back or, when the
gateway answers with inline base64 data, a ``data:image/png;base64,...`` URL.

Usage:
    from bulkgen.images import generate_image

    url = generate_image("A lighthouse at dawn", aspect_ratio="16:9", style="Watercolor")

    # Resolve any image reference to raw bytes
    data = fetch_image_bytes(url)
"""

import base64
import logging
from io import BytesIO

import requests
from PIL import Image

from bulkgen.litellm_client import get_config, get_headers, api_url, resolve_model, IMAGE_MODELS

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------

IMAGE_STYLES = [
    "Photorealistic",
    "Anime",
    "Watercolor",
    "Digital art",
    "Fantasy",
    "Cyberpunk",
    "Steampunk",
    "Minimalist",
    "Impressionistic",
]

ASPECT_RATIOS = ["1:1", "4:3", "3:4", "16:9", "9:16"]

DEFAULT_STYLE = "Watercolor"
DEFAULT_ASPECT_RATIO = "16:9"

STYLE_SUFFIXES = {
    "Photorealistic": ", photorealistic, ultra detailed, 8k, DSLR photo",
    "Anime": ", anime style, manga, Japanese animation, cel shaded",
    "Watercolor": ", watercolor painting, soft edges, artistic, paper texture",
    "Digital art": ", digital art, vibrant colors, detailed illustration",
    "Fantasy": ", fantasy art, epic, magical atmosphere, highly detailed",
    "Cyberpunk": ", cyberpunk, neon lights, futuristic city, high contrast",
    "Steampunk": ", steampunk, brass and copper, victorian machinery, gears",
    "Minimalist": ", minimalist, clean lines, simple shapes, modern design",
    "Impressionistic": ", impressionist painting, visible brush strokes, natural light",
}

# Closest gateway size for each ratio; the exact ratio is enforced by cropping
RATIO_SIZES = {
    "1:1": "1024x1024",
    "4:3": "1536x1024",
    "3:4": "1024x1536",
    "16:9": "1536x1024",
    "9:16": "1024x1536",
}

DATA_URL_PREFIX = "data:image/png;base64,"


def validate_options(aspect_ratio: str, style: str) -> None:
    """Raise ValueError unless both values belong to the fixed enumerations."""
    if aspect_ratio not in ASPECT_RATIOS:
        raise ValueError(f"Invalid aspect ratio '{aspect_ratio}'. Must be one of: {ASPECT_RATIOS}")
    if style not in IMAGE_STYLES:
        raise ValueError(f"Invalid style '{style}'. Must be one of: {IMAGE_STYLES}")


def build_prompt(prompt: str, style: str) -> str:
    return prompt + STYLE_SUFFIXES.get(style, "")


# ---------------------------------------------------------------------------
# Post-processing
# ---------------------------------------------------------------------------

def crop_to_aspect_ratio(data: bytes, aspect_ratio: str) -> bytes:
    """Center-crop image bytes to the given "W:H" ratio and return PNG bytes."""
    ratio_w, ratio_h = map(int, aspect_ratio.split(":"))
    target_ratio = ratio_w / ratio_h
    img = Image.open(BytesIO(data))
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGB")
    img_ratio = img.width / img.height
    if abs(img_ratio - target_ratio) > 0.01:
        if img_ratio > target_ratio:
            # Wider than target: crop sides
            new_w = int(img.height * target_ratio)
            left = (img.width - new_w) // 2
            img = img.crop((left, 0, left + new_w, img.height))
        else:
            # Taller than target: crop top/bottom
            new_h = int(img.width / target_ratio)
            top = (img.height - new_h) // 2
            img = img.crop((0, top, img.width, top + new_h))
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def to_data_url(data: bytes) -> str:
    return DATA_URL_PREFIX + base64.b64encode(data).decode("ascii")


def fetch_image_bytes(image_url: str, timeout: int = 60) -> bytes:
    """
    Resolve an image reference to raw bytes.

    Args:
        image_url: A data URL produced by generate_image() or a remote URL.
        timeout:   Download timeout in seconds for remote URLs.

    Raises:
        RuntimeError: If the remote download fails.
        ValueError:   If a data URL is malformed.
    """
    if image_url.startswith("data:"):
        header, _, payload = image_url.partition(",")
        if not header.endswith(";base64") or not payload:
            raise ValueError("Malformed data URL")
        return base64.b64decode(payload)

    r = requests.get(image_url, timeout=timeout)
    if r.status_code != 200:
        raise RuntimeError(f"Failed to download image: {r.status_code}")
    return r.content


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

def _error_message(r: requests.Response) -> str:
    try:
        return r.json().get("error", {}).get("message", r.text[:300])
    except (ValueError, AttributeError):
        return r.text[:300]


def _request_image(prompt: str, aspect_ratio: str, model: str, timeout: int) -> str:
    payload = {
        "model": resolve_model(model),
        "prompt": prompt,
        "n": 1,
        "size": RATIO_SIZES[aspect_ratio],
        "aspect_ratio": aspect_ratio,
    }

    r = requests.post(
        api_url("/v1/images/generations"),
        headers=get_headers(),
        json=payload,
        timeout=timeout,
    )

    if r.status_code != 200:
        raise RuntimeError(f"Image generation failed ({r.status_code}): {_error_message(r)}")

    data = r.json()

    if not data.get("data"):
        raise RuntimeError(f"No image data in response: {data}")

    item = data["data"][0]

    # Gateway returns a URL to the generated image
    if item.get("url"):
        return item["url"]

    # Fallback: base64 encoded image
    if item.get("b64_json"):
        image_data = base64.b64decode(item["b64_json"])
        return to_data_url(crop_to_aspect_ratio(image_data, aspect_ratio))

    raise RuntimeError(f"Response has no url or b64_json: {item}")


def generate_image(
    prompt: str,
    aspect_ratio: str = DEFAULT_ASPECT_RATIO,
    style: str = DEFAULT_STYLE,
    model: str | None = None,
    timeout: int = 300,
) -> str:
    """
    Generate one image from a text prompt.

    The requested model is tried first, then the rest of IMAGE_MODELS in order.

    Args:
        prompt:       Text description of the desired image.
        aspect_ratio: One of ASPECT_RATIOS.
        style:        One of IMAGE_STYLES; its preset suffix is appended to the prompt.
        model:        Model alias or full ID. Defaults to the configured image model.
        timeout:      Request timeout in seconds.

    Returns:
        An image reference (remote URL or PNG data URL).

    Raises:
        ValueError: If the aspect ratio or style is not valid.
        RuntimeError: If every model failed.
    """
    validate_options(aspect_ratio, style)
    final_prompt = build_prompt(prompt, style)

    model = model or get_config()["image_model"]
    models_to_try = list(IMAGE_MODELS)
    if model in models_to_try:
        models_to_try.remove(model)
    models_to_try.insert(0, model)

    last_error = None
    for m in models_to_try:
        try:
            return _request_image(final_prompt, aspect_ratio, m, timeout)
        except Exception as e:
            logger.warning("Model %s failed: %s", m, e)
            last_error = e

    raise RuntimeError(f"All image models failed. Last error: {last_error}")
