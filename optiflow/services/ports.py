from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

from optiflow.domain.entities import TaskEntity


class TaskStore(Protocol):
    def list_completed_recurring_root_tasks(self) -> list[TaskEntity]: ...

    def exists_occurrence(self, parent_task_id: str, due_date: datetime) -> bool: ...

    def count_occurrences(self, parent_task_id: str) -> int: ...

    def insert_task(self, task: TaskEntity) -> TaskEntity: ...

    def get_task(self, task_id: str) -> Optional[TaskEntity]: ...

    def update_task(self, task_id: str, data: dict[str, Any]) -> Optional[TaskEntity]: ...

    def list_recurring_roots(self) -> list[TaskEntity]: ...

    def list_series(self, root_id: str) -> list[TaskEntity]: ...

    def cancel_pending_occurrences_after(self, parent_task_id: str, after: datetime) -> int: ...
