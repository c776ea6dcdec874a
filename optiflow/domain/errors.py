from __future__ import annotations


class RecurrenceError(Exception):
    """Base class for errors raised by the recurring task core."""


class InvalidRuleError(RecurrenceError, ValueError):
    """The recurrence rule is malformed; no occurrence can be computed from it."""


class StoreError(RecurrenceError):
    pass


class StoreReadError(StoreError):
    pass


class StoreWriteError(StoreError):
    pass


class TaskNotFoundError(StoreError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id
