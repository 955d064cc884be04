"""
Archive Builder
===============

Bundle every finished task's image into one zip archive.

Entries are named "<n>.png" where n is the task's 1-based position in the
collection, so tasks that did not finish leave gaps in the numbering.
Fetching is best-effort: an image that cannot be fetched or decoded is left
out and reported in ArchiveResult.skipped.
"""

import logging
import zipfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from io import BytesIO
from collections.abc import Callable, Iterable

from PIL import Image

from bulkgen.images import fetch_image_bytes
from bulkgen.tasks import GenerationTask, Done

logger = logging.getLogger(__name__)

ARCHIVE_NAME = "generated-images.zip"


@dataclass
class ArchiveResult:
    content: bytes
    filenames: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def archive_entries(tasks: Iterable[GenerationTask]) -> list[tuple[str, str]]:
    """Return (filename, image_url) pairs for the done tasks, in collection order."""
    return [
        (f"{i}.png", task.state.image_url)
        for i, task in enumerate(tasks, 1)
        if isinstance(task.state, Done)
    ]


def ensure_png(data: bytes) -> bytes:
    """Return the bytes unchanged if they are a PNG, otherwise re-encode as PNG."""
    with Image.open(BytesIO(data)) as img:
        if img.format == "PNG":
            return data
        if img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGB")
        buf = BytesIO()
        img.save(buf, format="PNG")
        return buf.getvalue()


def build_archive(
    tasks: Iterable[GenerationTask],
    fetch: Callable[[str], bytes] = fetch_image_bytes,
    max_workers: int = 4,
) -> ArchiveResult | None:
    """
    Fetch the images of all done tasks and zip them.

    Args:
        tasks:       The task collection, in display order.
        fetch:       Resolves an image reference to bytes.
        max_workers: Concurrent fetches.

    Returns:
        The archive, or None when no task is done or no image could be fetched.
    """
    entries = archive_entries(tasks)
    if not entries:
        return None

    blobs = {}
    with ThreadPoolExecutor(max_workers=min(max_workers, len(entries))) as executor:
        futures = {executor.submit(fetch, url): name for name, url in entries}
        for future in as_completed(futures):
            name = futures[future]
            try:
                blobs[name] = ensure_png(future.result())
            except Exception as e:
                logger.warning("Leaving %s out of the archive: %s", name, e)

    filenames = [name for name, _ in entries if name in blobs]
    skipped = [name for name, _ in entries if name not in blobs]
    if not filenames:
        return None

    buf = BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for name in filenames:
            zf.writestr(name, blobs[name])
    logger.info("Built archive with %d images (%d skipped)", len(filenames), len(skipped))
    return ArchiveResult(content=buf.getvalue(), filenames=filenames, skipped=skipped)
