"""
Batch Runner
============

Owns the task collection and drives sequential calls into the generation
client, reconciling every result back into the collection by task id.

All board mutations happen on the event loop thread; only the blocking
generation call runs in a worker thread. A completion is applied only if its
task is still on the board under the same attempt number, so a result from a
replaced batch or a superseded attempt never overwrites newer state.

Usage:
    runner = BatchRunner()
    await runner.submit("a cat\\na dog")
    await runner.regenerate_failed()
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from contextlib import suppress
from dataclasses import dataclass

from bulkgen.images import generate_image, validate_options, DEFAULT_STYLE, DEFAULT_ASPECT_RATIO
from bulkgen.tasks import GenerationTask, TaskState, Done, Error, error_message, new_tasks, split_prompts

logger = logging.getLogger(__name__)

EMPTY_PROMPTS = "Please enter at least one prompt."


class PromptValidationError(ValueError):
    """Raised when a submission holds no non-blank prompt."""


class RunnerBusyError(RuntimeError):
    """Raised when a batch-level run is requested while another is in flight."""


class TaskBusyError(RuntimeError):
    """Raised when a task that is still generating is asked to regenerate."""


@dataclass(frozen=True)
class GenerationOptions:
    style: str = DEFAULT_STYLE
    aspect_ratio: str = DEFAULT_ASPECT_RATIO

    def __post_init__(self):
        validate_options(self.aspect_ratio, self.style)

    def updated(self, style: str | None = None, aspect_ratio: str | None = None) -> "GenerationOptions":
        return GenerationOptions(style=style or self.style, aspect_ratio=aspect_ratio or self.aspect_ratio)

    def to_dict(self) -> dict:
        return {"style": self.style, "aspect_ratio": self.aspect_ratio}


Listener = Callable[["TaskBoard"], None]


class TaskBoard:
    """Ordered task collection with change notification."""

    def __init__(self):
        self._tasks: dict[str, GenerationTask] = {}
        self._listeners: list[Listener] = []
        self.version = 0

    def __len__(self) -> int:
        return len(self._tasks)

    def tasks(self) -> list[GenerationTask]:
        return list(self._tasks.values())

    def get(self, task_id: str) -> GenerationTask:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise KeyError(f"Task not found: {task_id}") from None

    def with_status(self, status: str) -> list[GenerationTask]:
        return [t for t in self._tasks.values() if t.status == status]

    def has_status(self, status: str) -> bool:
        return any(t.status == status for t in self._tasks.values())

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener called after every change. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    def replace_all(self, tasks: Iterable[GenerationTask]) -> None:
        self._tasks = {t.id: t for t in tasks}
        self._changed()

    def restart(self, task_ids: Iterable[str]) -> list[GenerationTask]:
        """Reset the given tasks to Generating in place and return them."""
        restarted = []
        for task_id in task_ids:
            task = self.get(task_id).restart()
            self._tasks[task_id] = task
            restarted.append(task)
        if restarted:
            self._changed()
        return restarted

    def resolve(self, task: GenerationTask, state: TaskState) -> bool:
        """Apply a terminal state for one attempt. Returns False if the attempt is stale."""
        current = self._tasks.get(task.id)
        if current is None or current.attempt != task.attempt:
            logger.debug("Discarding stale result for task %s (attempt %d)", task.id, task.attempt)
            return False
        self._tasks[task.id] = current.resolve(state)
        self._changed()
        return True

    def _changed(self) -> None:
        self.version += 1
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Task board listener failed")


class BatchRunner:
    """Runs generation tasks one at a time against the generation client."""

    def __init__(
        self,
        generate: Callable[[str, str, str], str] = generate_image,
        options: GenerationOptions | None = None,
        board: TaskBoard | None = None,
    ):
        self.generate = generate
        self.options = options or GenerationOptions()
        self.board = board or TaskBoard()
        self._batch_runs = 0
        self._background: set[asyncio.Task] = set()

    @property
    def is_loading(self) -> bool:
        """True while a submit or regenerate-failed run is in flight."""
        return self._batch_runs > 0

    def set_options(self, style: str | None = None, aspect_ratio: str | None = None) -> GenerationOptions:
        self.options = self.options.updated(style=style, aspect_ratio=aspect_ratio)
        return self.options

    # -- begin halves: validate, mutate the board, return the tasks to run ----

    def begin_submit(
        self, prompts: str | list[str], options: GenerationOptions | None = None
    ) -> list[GenerationTask]:
        lines = split_prompts(prompts)
        if not lines:
            raise PromptValidationError(EMPTY_PROMPTS)
        if options is not None:
            self.options = options
        tasks = new_tasks(lines)
        self.board.replace_all(tasks)
        logger.info("New batch of %d prompts", len(tasks))
        return tasks

    def begin_regenerate(self, task_id: str) -> list[GenerationTask]:
        task = self.board.get(task_id)
        if task.status == "generating":
            raise TaskBusyError(f"Task {task_id} is already generating")
        return self.board.restart([task_id])

    def begin_regenerate_failed(self) -> list[GenerationTask]:
        failed = self.board.with_status("error")
        if not failed:
            return []
        logger.info("Regenerating %d failed tasks", len(failed))
        return self.board.restart([t.id for t in failed])

    # -- runs ------------------------------------------------------------------

    async def run(self, tasks: list[GenerationTask]) -> None:
        """Generate each task in order, one call at a time. Failures become task state."""
        options = self.options
        for task in tasks:
            logger.debug("Generating task %s", task.id)
            try:
                image_url = await asyncio.to_thread(
                    self.generate, task.prompt, options.aspect_ratio, options.style
                )
            except Exception as e:
                logger.warning("Task %s failed: %s", task.id, e)
                state = Error(error_message(e))
            else:
                state = Done(image_url)
            self.board.resolve(task, state)

    def _batch_run(self, tasks: list[GenerationTask]):
        # Loading is raised before the coroutine is scheduled so a second
        # request in the same tick already sees it.
        self._batch_runs += 1
        return self._run_and_release(tasks)

    async def _run_and_release(self, tasks: list[GenerationTask]) -> None:
        try:
            await self.run(tasks)
        finally:
            self._batch_runs -= 1

    async def submit(
        self, prompts: str | list[str], options: GenerationOptions | None = None
    ) -> list[GenerationTask]:
        tasks = self.begin_submit(prompts, options)
        await self._batch_run(tasks)
        return tasks

    async def regenerate(self, task_id: str) -> list[GenerationTask]:
        tasks = self.begin_regenerate(task_id)
        await self.run(tasks)
        return tasks

    async def regenerate_failed(self) -> list[GenerationTask]:
        tasks = self.begin_regenerate_failed()
        if tasks:
            await self._batch_run(tasks)
        return tasks

    # -- background variants used by the HTTP layer ----------------------------

    def _ensure_idle(self) -> None:
        if self.is_loading:
            raise RunnerBusyError("A generation batch is already running")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def start_submit(
        self, prompts: str | list[str], options: GenerationOptions | None = None
    ) -> list[GenerationTask]:
        self._ensure_idle()
        tasks = self.begin_submit(prompts, options)
        self._spawn(self._batch_run(tasks))
        return tasks

    def start_regenerate(self, task_id: str) -> list[GenerationTask]:
        tasks = self.begin_regenerate(task_id)
        self._spawn(self.run(tasks))
        return tasks

    def start_regenerate_failed(self) -> list[GenerationTask]:
        self._ensure_idle()
        tasks = self.begin_regenerate_failed()
        if tasks:
            self._spawn(self._batch_run(tasks))
        return tasks

    async def wait_idle(self) -> None:
        """Wait until every background run has finished."""
        while self._background:
            await asyncio.wait(list(self._background))
