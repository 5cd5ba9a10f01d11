from __future__ import annotations

import enum


class TaskhubError(Exception):
    """Base class for domain errors raised by taskhub."""


class StoreFailure(TaskhubError):
    """A persistence call failed. Fatal for the current operation."""


class VisibilityLookupFailed(TaskhubError):
    """Staff visibility could not be resolved.

    Callers must treat this as a hard failure, never as "sees nothing".
    """


class Forbidden(TaskhubError):
    def __init__(self, message: str = "Not allowed"):
        self.message = message
        super().__init__(message)


class AssigneeLimitError(ValueError):
    pass


class ReplicationSkip(str, enum.Enum):
    no_repeat_interval = "no_repeat_interval"
    no_due_date = "no_due_date"
    not_completed = "not_completed"
    deleted = "deleted"


_SKIP_MESSAGES = {
    ReplicationSkip.no_repeat_interval: "Task has no repeat interval set",
    ReplicationSkip.no_due_date: "Task has no due date",
    ReplicationSkip.not_completed: "Task is not completed",
    ReplicationSkip.deleted: "Task is deleted",
}


class NotEligibleForReplication(TaskhubError):
    """Expected outcome for tasks that should not be replicated.

    Returned on `ReplicationResult`, not raised.
    """

    def __init__(self, task_id: int | None, reason: ReplicationSkip):
        self.task_id = task_id
        self.reason = reason
        super().__init__(_SKIP_MESSAGES[reason])


class PartialReplicationFailure(TaskhubError):
    """A cascade step failed after the new occurrence was created."""

    def __init__(self, *, source_task_id: int, new_task_id: int, step: str, detail: str):
        self.source_task_id = source_task_id
        self.new_task_id = new_task_id
        self.step = step
        self.detail = detail
        super().__init__(f"task {source_task_id} -> {new_task_id}: {step} failed: {detail}")
