"""
Bulk Image Generator Backend
============================
FastAPI backend exposing the batch runner: submit prompts, poll task state,
regenerate failures, preview images and download everything as a zip.

Run with:
    python -m backend.main
    uvicorn backend.main:app --port 8000
"""

import asyncio
import logging
import os

import uvicorn
from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse, Response
from pydantic import BaseModel, Field

from bulkgen.archive import ARCHIVE_NAME, build_archive
from bulkgen.images import ASPECT_RATIOS, IMAGE_STYLES, fetch_image_bytes
from bulkgen.runner import (
    BatchRunner,
    PromptValidationError,
    RunnerBusyError,
    TaskBusyError,
)

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=os.environ.get("BULKGEN_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def get_allowed_origins() -> list[str]:
    origins = os.environ.get("BULKGEN_ALLOWED_ORIGINS", "")
    return [o.strip() for o in origins.split(",") if o.strip()] or ["*"]


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(title="Bulk Image Generator API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

runner = BatchRunner()


def get_runner() -> BatchRunner:
    return runner


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class BatchRequest(BaseModel):
    prompts: str = Field(..., max_length=50000)
    style: str | None = Field(default=None)
    aspect_ratio: str | None = Field(default=None)

class OptionsRequest(BaseModel):
    style: str | None = Field(default=None)
    aspect_ratio: str | None = Field(default=None)


def _board_payload(runner: BatchRunner) -> dict:
    board = runner.board
    return {
        "tasks": [t.to_dict() for t in board.tasks()],
        "is_loading": runner.is_loading,
        "has_failed": board.has_status("error"),
        "has_done": board.has_status("done"),
        "version": board.version,
    }


def _get_task(runner: BatchRunner, task_id: str):
    try:
        return runner.board.get(task_id)
    except KeyError:
        raise HTTPException(404, "Task not found")

# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.get("/api/health")
async def health():
    return {"status": "ok"}


@app.get("/api/options")
async def get_options(runner: BatchRunner = Depends(get_runner)):
    return {
        "styles": IMAGE_STYLES,
        "aspect_ratios": ASPECT_RATIOS,
        "current": runner.options.to_dict(),
    }


@app.put("/api/options")
async def update_options(req: OptionsRequest, runner: BatchRunner = Depends(get_runner)):
    try:
        options = runner.set_options(style=req.style, aspect_ratio=req.aspect_ratio)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"current": options.to_dict()}


@app.post("/api/batch", status_code=202)
async def submit_batch(req: BatchRequest, runner: BatchRunner = Depends(get_runner)):
    if runner.is_loading:
        raise HTTPException(409, "A generation batch is already running")
    try:
        options = runner.options.updated(style=req.style, aspect_ratio=req.aspect_ratio)
        tasks = runner.start_submit(req.prompts, options)
    except RunnerBusyError as e:
        raise HTTPException(409, str(e))
    except ValueError as e:
        # PromptValidationError and invalid style/ratio
        raise HTTPException(400, str(e))
    return {"tasks": [t.to_dict() for t in tasks], "options": options.to_dict()}


@app.get("/api/tasks")
async def list_tasks(runner: BatchRunner = Depends(get_runner)):
    return _board_payload(runner)


@app.post("/api/tasks/regenerate-failed", status_code=202)
async def regenerate_failed(runner: BatchRunner = Depends(get_runner)):
    try:
        tasks = runner.start_regenerate_failed()
    except RunnerBusyError as e:
        raise HTTPException(409, str(e))
    return {"tasks": [t.to_dict() for t in tasks]}


@app.get("/api/tasks/{task_id}")
async def get_task(task_id: str, runner: BatchRunner = Depends(get_runner)):
    return _get_task(runner, task_id).to_dict()


@app.post("/api/tasks/{task_id}/regenerate", status_code=202)
async def regenerate_task(task_id: str, runner: BatchRunner = Depends(get_runner)):
    _get_task(runner, task_id)
    try:
        tasks = runner.start_regenerate(task_id)
    except TaskBusyError as e:
        raise HTTPException(409, str(e))
    return tasks[0].to_dict()


@app.get("/api/tasks/{task_id}/image")
async def preview_image(task_id: str, runner: BatchRunner = Depends(get_runner)):
    """Serve the full-size image of a finished task (for the preview overlay)."""
    task = _get_task(runner, task_id)
    if task.image_url is None:
        raise HTTPException(404, "Image not ready")
    if not task.image_url.startswith("data:"):
        return RedirectResponse(task.image_url)
    try:
        content = fetch_image_bytes(task.image_url)
    except ValueError as e:
        raise HTTPException(500, f"Stored image is unreadable: {e}")
    return Response(content=content, media_type="image/png")


@app.get("/api/download")
async def download_all(runner: BatchRunner = Depends(get_runner)):
    tasks = runner.board.tasks()
    result = await asyncio.to_thread(build_archive, tasks)
    if result is None:
        raise HTTPException(404, "No generated images to download")

    headers = {"Content-Disposition": f'attachment; filename="{ARCHIVE_NAME}"'}
    if result.skipped:
        logger.warning("Archive is missing %d images", len(result.skipped))
        headers["X-Skipped-Images"] = ",".join(result.skipped)
    return Response(content=result.content, media_type="application/zip", headers=headers)


# ---------------------------------------------------------------------------
# Launcher
# ---------------------------------------------------------------------------

def serve() -> None:
    uvicorn.run(
        app,
        host=os.environ.get("BULKGEN_HOST", "127.0.0.1"),
        port=int(os.environ.get("BULKGEN_PORT", "8000")),
        log_level=os.environ.get("BULKGEN_LOG_LEVEL", "INFO").lower(),
    )


if __name__ == "__main__":
    serve()
