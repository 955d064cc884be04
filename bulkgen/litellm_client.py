"""
Gateway Client Configuration
============================

Reads API credentials for the OpenAI-compatible image gateway and provides
shared configuration for the generation client.

Settings are discovered from the first existing JSON file of:
    $BULKGEN_SETTINGS
    <repo>/backend/settings.json
    <repo>/settings.json

The file is expected to hold an "env" object:
    {"env": {"LITELLM_API_KEY": "...", "LITELLM_BASE_URL": "...",
             "BULKGEN_IMAGE_MODEL": "gemini-image"}}

Environment variables of the same names override the file values.
"""

import os
import json
from pathlib import Path

# ---------------------------------------------------------------------------
# Settings discovery
# ---------------------------------------------------------------------------

ROOT_DIR = Path(__file__).resolve().parent.parent

DEFAULT_IMAGE_MODEL = "gemini-image"

_config_cache = None


def _settings_paths() -> list[Path]:
    paths = []
    if os.environ.get("BULKGEN_SETTINGS"):
        paths.append(Path(os.environ["BULKGEN_SETTINGS"]))
    paths.append(ROOT_DIR / "backend" / "settings.json")
    paths.append(ROOT_DIR / "settings.json")
    return paths


def _load_settings() -> dict:
    """Load settings from the first available settings file."""
    for path in _settings_paths():
        if path.exists():
            with open(path) as f:
                data = json.load(f)
            env = data.get("env", {})
            return {
                "api_key": env.get("LITELLM_API_KEY", ""),
                "base_url": env.get("LITELLM_BASE_URL", ""),
                "image_model": env.get("BULKGEN_IMAGE_MODEL", DEFAULT_IMAGE_MODEL),
                "source": str(path),
            }
    return {}


def get_config() -> dict:
    """
    Get the gateway configuration.

    Returns a dict with keys: api_key, base_url, image_model, source.
    Values can be overridden with environment variables:
        LITELLM_API_KEY, LITELLM_BASE_URL, BULKGEN_IMAGE_MODEL
    """
    global _config_cache
    if _config_cache is None:
        _config_cache = _load_settings()

    return {
        "api_key": os.environ.get("LITELLM_API_KEY", _config_cache.get("api_key", "")),
        "base_url": os.environ.get("LITELLM_BASE_URL", _config_cache.get("base_url", "")),
        "image_model": os.environ.get(
            "BULKGEN_IMAGE_MODEL", _config_cache.get("image_model", DEFAULT_IMAGE_MODEL)
        ),
        "source": _config_cache.get("source", "env"),
    }


def reset_config() -> None:
    """Forget the cached settings file so the next get_config() reloads it."""
    global _config_cache
    _config_cache = None


def get_headers(extra: dict | None = None) -> dict:
    """Return standard Authorization + Content-Type headers."""
    cfg = get_config()
    h = {
        "Authorization": f"Bearer {cfg['api_key']}",
        "Content-Type": "application/json",
    }
    if extra:
        h.update(extra)
    return h


def api_url(path: str) -> str:
    """Build a full API URL from a relative path like '/v1/images/generations'."""
    cfg = get_config()
    base = cfg["base_url"].rstrip("/")
    return f"{base}{path}"


# ---------------------------------------------------------------------------
# Model catalog
# ---------------------------------------------------------------------------

MODELS = {
    "gemini-image": "google/gemini/gemini-2.5-flash-image",
    "imagen": "google/gemini/imagen-4.0-generate-001",
    "gpt-image": "gpt-image-1",
}

# Fallback order, default first
IMAGE_MODELS = ["gemini-image", "imagen", "gpt-image"]


def resolve_model(name: str) -> str:
    """
    Resolve a short model alias to its full gateway model ID.

    Examples:
        resolve_model("gemini-image") -> "google/gemini/gemini-2.5-flash-image"
        resolve_model("gpt-image")    -> "gpt-image-1"

    If the name is not a known alias, it is returned as-is (assumed to be
    a full model ID already).
    """
    return MODELS.get(name, name)


# ---------------------------------------------------------------------------
# Quick self-test
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cfg = get_config()
    print(f"Source:  {cfg['source']}")
    print(f"Base:    {cfg['base_url']}")
    print(f"Key:     {cfg['api_key'][:6]}...")
    print(f"Model:   {cfg['image_model']}")
    print(f"\nModel aliases:")
    for alias, full in MODELS.items():
        print(f"  {alias:20s} -> {full}")
