"""Exception taxonomy shared by the storage layer and the agents.

``StateNotFound`` never escapes the storage layer: absent or unreadable
documents are reported as ``None`` / defaults.  Everything else propagates
to the request boundary (``app.web.server``), which turns it into the
uniform ``{"success": false, "error": ...}`` envelope.
"""

from __future__ import annotations


class ProdevError(Exception):
    """Base class for all agent-level errors."""


class StateNotFound(ProdevError):
    """A persisted document is absent or does not contain valid JSON."""

    def __init__(self, path: str) -> None:
        super().__init__(f"No state stored at {path}")
        self.path = path


class StateWriteConflict(ProdevError):
    """The host rejected a write because the revision token was stale.

    Concurrent writers to the same document are last-writer-wins; this is
    only raised when the host itself detects the conflict.
    """

    def __init__(self, path: str, detail: str = "") -> None:
        message = f"Concurrent update detected for {path}"
        if detail:
            message += f": {detail}"
        super().__init__(message)
        self.path = path


class ModelError(ProdevError):
    """The generative model call failed."""


class ModelTimeoutError(ModelError):
    """The model did not answer within ``model_timeout_seconds``."""


class ModelResponseFormatError(ModelError):
    """The model answered, but not in the required shape.

    The raw text is kept for diagnosis; no mutation has been performed
    when this is raised.
    """

    def __init__(self, message: str, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text


class FileOperationError(ProdevError):
    """Applying one file of a task failed; remaining files were not attempted.

    ``applied`` lists the operations committed before the failure.  They are
    not rolled back.
    """

    def __init__(self, path: str, reason: str, applied: list[dict] | None = None) -> None:
        super().__init__(f"Failed to process file {path}: {reason}")
        self.path = path
        self.reason = reason
        self.applied = list(applied or [])


class ExternalServiceUnavailable(ProdevError):
    """Search or deployment collaborator could not be reached."""


class TaskNotFoundError(ProdevError):
    """No task with the given id exists in tasks.json."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id
