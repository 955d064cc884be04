"""
Generation task model
=====================

A task is one prompt's generation attempt and its current outcome. The outcome
is a tagged variant, so a task can only carry an image URL while it is done
and an error message while it has failed.
"""

import time
from dataclasses import dataclass, field, replace

UNKNOWN_ERROR = "An unknown error occurred."


@dataclass(frozen=True)
class Pending:
    """Reserved. Never assigned by the runner."""

    status = "pending"


@dataclass(frozen=True)
class Generating:
    status = "generating"


@dataclass(frozen=True)
class Done:
    image_url: str
    status = "done"


@dataclass(frozen=True)
class Error:
    message: str
    status = "error"


TaskState = Pending | Generating | Done | Error


@dataclass(frozen=True)
class GenerationTask:
    id: str
    prompt: str
    state: TaskState = field(default_factory=Generating)
    attempt: int = 0

    @property
    def status(self) -> str:
        return self.state.status

    @property
    def image_url(self) -> str | None:
        return self.state.image_url if isinstance(self.state, Done) else None

    @property
    def error(self) -> str | None:
        return self.state.message if isinstance(self.state, Error) else None

    def restart(self) -> "GenerationTask":
        """Return a copy reset to Generating under a new attempt number."""
        return replace(self, state=Generating(), attempt=self.attempt + 1)

    def resolve(self, state: TaskState) -> "GenerationTask":
        return replace(self, state=state)

    def to_dict(self) -> dict:
        """Serialize for API responses; absent fields are omitted."""
        d = {"id": self.id, "prompt": self.prompt, "status": self.status}
        if self.image_url is not None:
            d["imageUrl"] = self.image_url
        if self.error is not None:
            d["error"] = self.error
        return d


def error_message(exc: BaseException) -> str:
    """Human-readable message for a failed generation."""
    return str(exc).strip() or UNKNOWN_ERROR


def split_prompts(prompts: str | list[str]) -> list[str]:
    """Split newline-delimited prompt text, dropping blank lines."""
    lines = prompts.split("\n") if isinstance(prompts, str) else prompts
    return [line.strip() for line in lines if line.strip()]


_last_stamp = 0


def _batch_stamp() -> int:
    # Millisecond timestamp, bumped when two batches land in the same millisecond
    global _last_stamp
    stamp = max(int(time.time() * 1000), _last_stamp + 1)
    _last_stamp = stamp
    return stamp


def new_tasks(prompt_lines: list[str]) -> list[GenerationTask]:
    """Create one Generating task per prompt, ids derived from a batch stamp and position."""
    stamp = _batch_stamp()
    return [GenerationTask(id=f"{stamp}-{i}", prompt=p) for i, p in enumerate(prompt_lines)]
