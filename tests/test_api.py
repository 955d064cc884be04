from __future__ import annotations

import threading
import time
import zipfile
from collections.abc import Generator
from io import BytesIO
from typing import Any

import pytest
from fastapi.testclient import TestClient

from backend import main
from backend.main import app, get_runner
from bulkgen.runner import BatchRunner

from .factories import ScriptedGenerator, make_png


@pytest.fixture
def client(runner: BatchRunner) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_runner] = lambda: runner
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def wait_idle(client: TestClient, timeout: float = 5.0) -> dict[str, Any]:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        board = client.get("/api/tasks").json()
        if not board["is_loading"] and all(t["status"] != "generating" for t in board["tasks"]):
            return board
        time.sleep(0.01)
    raise AssertionError("generation did not finish in time")


def test_health(client: TestClient) -> None:
    assert client.get("/api/health").json() == {"status": "ok"}


def test_options_lists_presets_and_current_selection(client: TestClient) -> None:
    body = client.get("/api/options").json()

    assert "Steampunk" in body["styles"]
    assert body["aspect_ratios"] == ["1:1", "4:3", "3:4", "16:9", "9:16"]
    assert body["current"] == {"style": "Watercolor", "aspect_ratio": "16:9"}


def test_update_options(client: TestClient) -> None:
    response = client.put("/api/options", json={"aspect_ratio": "9:16"})
    assert response.json()["current"] == {"style": "Watercolor", "aspect_ratio": "9:16"}

    assert client.put("/api/options", json={"style": "Pixel art"}).status_code == 400


def test_blank_batch_is_rejected(client: TestClient) -> None:
    response = client.post("/api/batch", json={"prompts": "  \n \n"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Please enter at least one prompt."
    assert client.get("/api/tasks").json()["tasks"] == []


def test_batch_with_invalid_style_is_rejected(client: TestClient, generator: ScriptedGenerator) -> None:
    response = client.post("/api/batch", json={"prompts": "a cat", "style": "Pixel art"})

    assert response.status_code == 400
    assert generator.calls == []


def test_batch_runs_in_background(client: TestClient, generator: ScriptedGenerator) -> None:
    generator.results = ["url-1", RuntimeError("rate limited")]

    response = client.post(
        "/api/batch", json={"prompts": "a cat\na dog", "style": "Anime", "aspect_ratio": "1:1"}
    )

    assert response.status_code == 202
    assert [t["status"] for t in response.json()["tasks"]] == ["generating", "generating"]
    board = wait_idle(client)
    assert [(t["prompt"], t["status"]) for t in board["tasks"]] == [("a cat", "done"), ("a dog", "error")]
    assert board["tasks"][0]["imageUrl"] == "url-1"
    assert board["tasks"][1]["error"] == "rate limited"
    assert board["has_failed"] and board["has_done"]
    assert generator.calls[0] == ("a cat", "1:1", "Anime")


def test_regenerate_failed_reruns_errors_only(client: TestClient, generator: ScriptedGenerator) -> None:
    generator.results = ["url-1", RuntimeError("rate limited")]
    client.post("/api/batch", json={"prompts": "a cat\na dog"})
    wait_idle(client)

    response = client.post("/api/tasks/regenerate-failed")

    assert response.status_code == 202
    assert [t["prompt"] for t in response.json()["tasks"]] == ["a dog"]
    board = wait_idle(client)
    assert not board["has_failed"]
    assert generator.prompts == ["a cat", "a dog", "a dog"]


def test_regenerate_failed_with_nothing_failed(client: TestClient, generator: ScriptedGenerator) -> None:
    client.post("/api/batch", json={"prompts": "a cat"})
    wait_idle(client)

    response = client.post("/api/tasks/regenerate-failed")

    assert response.json() == {"tasks": []}
    assert len(generator.calls) == 1


def test_regenerate_single_task(client: TestClient, generator: ScriptedGenerator) -> None:
    client.post("/api/batch", json={"prompts": "a cat\na dog"})
    first, second = wait_idle(client)["tasks"]

    response = client.post(f"/api/tasks/{second['id']}/regenerate")

    assert response.status_code == 202
    assert response.json()["status"] == "generating"
    board = wait_idle(client)
    assert board["tasks"][0] == first
    assert board["tasks"][1]["imageUrl"] == "url-3"


def test_unknown_task_returns_404(client: TestClient) -> None:
    assert client.get("/api/tasks/nope").status_code == 404
    assert client.post("/api/tasks/nope/regenerate").status_code == 404
    assert client.get("/api/tasks/nope/image").status_code == 404


def test_busy_runner_rejects_batch_actions() -> None:
    gate = threading.Event()
    runner = BatchRunner(generate=ScriptedGenerator(gate=gate))
    app.dependency_overrides[get_runner] = lambda: runner
    try:
        with TestClient(app) as client:
            first = client.post("/api/batch", json={"prompts": "a\nb"}).json()["tasks"]

            assert client.get("/api/tasks").json()["is_loading"] is True
            assert client.post("/api/batch", json={"prompts": "c"}).status_code == 409
            assert client.post("/api/tasks/regenerate-failed").status_code == 409
            assert client.post(f"/api/tasks/{first[1]['id']}/regenerate").status_code == 409

            gate.set()
            board = wait_idle(client)
            assert [t["status"] for t in board["tasks"]] == ["done", "done"]
    finally:
        gate.set()
        app.dependency_overrides.clear()


def test_preview_serves_inline_images(client: TestClient, generator: ScriptedGenerator, png_data_url: str) -> None:
    generator.results = [png_data_url, "https://cdn.test/2.png"]
    client.post("/api/batch", json={"prompts": "a\nb"})
    inline, remote = wait_idle(client)["tasks"]

    response = client.get(f"/api/tasks/{inline['id']}/image")
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    assert response.content == make_png()

    response = client.get(f"/api/tasks/{remote['id']}/image", follow_redirects=False)
    assert response.status_code == 307
    assert response.headers["location"] == "https://cdn.test/2.png"


def test_download_zips_done_images(client: TestClient, generator: ScriptedGenerator, png_data_url: str) -> None:
    generator.results = [png_data_url, RuntimeError("nope"), png_data_url]
    client.post("/api/batch", json={"prompts": "a\nb\nc"})
    wait_idle(client)

    response = client.get("/api/download")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    assert 'filename="generated-images.zip"' in response.headers["content-disposition"]
    with zipfile.ZipFile(BytesIO(response.content)) as zf:
        assert sorted(zf.namelist()) == ["1.png", "3.png"]


def test_download_reports_skipped_images(client: TestClient, generator: ScriptedGenerator, png_data_url: str) -> None:
    generator.results = [png_data_url, "data:image/png;base64,bm90LWEtcG5n"]
    client.post("/api/batch", json={"prompts": "a\nb"})
    wait_idle(client)

    response = client.get("/api/download")

    assert response.status_code == 200
    assert response.headers["x-skipped-images"] == "2.png"


def test_download_without_done_images_returns_404(client: TestClient, generator: ScriptedGenerator) -> None:
    assert client.get("/api/download").status_code == 404

    generator.results = [RuntimeError("nope")]
    client.post("/api/batch", json={"prompts": "a"})
    wait_idle(client)
    assert client.get("/api/download").status_code == 404


def test_serve_runs_app_with_uvicorn(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[tuple[Any, dict[str, Any]]] = []
    monkeypatch.setattr(main.uvicorn, "run", lambda target, **kwargs: calls.append((target, kwargs)))
    monkeypatch.setenv("BULKGEN_PORT", "9001")

    main.serve()

    assert calls == [(app, {"host": "127.0.0.1", "port": 9001, "log_level": "info"})]
