"""
Bulk Image Generator
====================

Generate one image per prompt line through an OpenAI-compatible image
gateway, retry the failures, and zip the results.

Available modules:
    - litellm_client: Gateway configuration and authentication
    - images: Generation client (prompt, aspect ratio, style -> image URL)
    - tasks: Generation task model
    - runner: Batch runner owning the task collection
    - archive: Zip archive of finished images

Quick Start:
    import asyncio
    from bulkgen.runner import BatchRunner
    from bulkgen.archive import build_archive

    runner = BatchRunner()
    asyncio.run(runner.submit("a cat\\na dog"))
    archive = build_archive(runner.board.tasks())
"""

from bulkgen.litellm_client import get_config
