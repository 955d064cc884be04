from __future__ import annotations

from collections.abc import Iterator

import pytest

from bulkgen import litellm_client
from bulkgen.images import to_data_url
from bulkgen.runner import BatchRunner

from .factories import ScriptedGenerator, make_png


@pytest.fixture
def png_data_url() -> str:
    return to_data_url(make_png())


@pytest.fixture
def generator() -> ScriptedGenerator:
    return ScriptedGenerator()


@pytest.fixture
def runner(generator: ScriptedGenerator) -> BatchRunner:
    return BatchRunner(generate=generator)


@pytest.fixture
def gateway_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Iterator[None]:
    monkeypatch.setenv("BULKGEN_SETTINGS", str(tmp_path / "missing.json"))
    monkeypatch.setenv("LITELLM_BASE_URL", "https://gateway.test/")
    monkeypatch.setenv("LITELLM_API_KEY", "sk-test")
    monkeypatch.delenv("BULKGEN_IMAGE_MODEL", raising=False)
    monkeypatch.setattr(litellm_client, "ROOT_DIR", tmp_path)
    litellm_client.reset_config()
    yield
    litellm_client.reset_config()
