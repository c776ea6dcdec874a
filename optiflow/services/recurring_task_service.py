from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Optional

from optiflow.domain.entities import RecurrenceRule, TaskEntity, parse_timestamp
from optiflow.domain.enums import TaskPriority, TaskStatus
from optiflow.domain.errors import InvalidRuleError, StoreWriteError, TaskNotFoundError
from optiflow.domain.recurrence import compute_next_due_date, next_due_dates
from optiflow.infra.models import utcnow

from .ports import TaskStore

logger = logging.getLogger(__name__)

DEFAULT_SECTOR = "Geral"
DEFAULT_TITLE = "Tarefa Recorrente"


@dataclass
class GenerationReport:
    """Outcome of one generation batch, keyed by root task id."""

    created: list[TaskEntity] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)


class RecurringTaskService:
    def __init__(
        self,
        repo: TaskStore,
        clock: Callable[[], datetime] = utcnow,
        preview_count: int = 3,
    ) -> None:
        self._repo = repo
        self._clock = clock
        self._preview_count = preview_count

    def generate_recurring_tasks(self) -> GenerationReport:
        """Create the next occurrence of every completed recurring root task.

        Listing the roots is the only failure that aborts the batch; rule and
        write errors are logged per root and the remaining roots are still
        processed. Running the batch again without changes creates nothing.
        """
        now = self._clock()
        report = GenerationReport()

        roots = self._repo.list_completed_recurring_root_tasks()
        logger.info("Checking %d completed recurring tasks", len(roots))

        for root in roots:
            if not root.is_root:
                continue
            try:
                created = self._generate_next(root, now, report)
            except (InvalidRuleError, StoreWriteError) as exc:
                logger.error("Could not generate next occurrence of task %s: %s", root.id, exc)
                report.failed[root.id] = str(exc)
                continue
            if created is not None:
                report.created.append(created)

        logger.info(
            "Recurring generation finished: %d created, %d skipped, %d failed",
            len(report.created),
            len(report.skipped),
            len(report.failed),
        )
        return report

    def _generate_next(
        self,
        root: TaskEntity,
        now: datetime,
        report: GenerationReport,
    ) -> Optional[TaskEntity]:
        rule = root.recurrence_pattern
        if rule is None:
            report.skipped[root.id] = "no recurrence pattern"
            return None
        if root.due_date is None:
            report.skipped[root.id] = "no due date"
            return None

        next_due = compute_next_due_date(root.due_date, rule, now)
        if next_due is None:
            report.skipped[root.id] = "series ended"
            return None

        if rule.max_occurrences is not None:
            # The root is the first occurrence of its series.
            if 1 + self._repo.count_occurrences(root.id) >= rule.max_occurrences:
                report.skipped[root.id] = "max occurrences reached"
                return None

        if self._repo.exists_occurrence(root.id, next_due):
            report.skipped[root.id] = "already generated"
            return None

        occurrence = replace(
            root,
            id=None,
            due_date=next_due,
            status=TaskStatus.PENDING,
            is_recurring=True,
            recurrence_pattern=rule,
            parent_task_id=root.id,
            created_at=None,
            updated_at=None,
            completed_at=None,
        )
        created = self._repo.insert_task(occurrence)
        logger.info("Created occurrence %s of task %s due %s", created.id, root.id, next_due.isoformat())
        return created

    def create_recurring_task(
        self,
        data: dict[str, Any],
        rule: RecurrenceRule | dict[str, Any],
    ) -> TaskEntity:
        fields = {
            key: value
            for key, value in data.items()
            if key not in ("is_recurring", "recurrence_pattern", "parent_task_id")
        }
        fields["due_date"] = parse_timestamp(fields.get("due_date"))
        fields["title"] = fields.get("title") or DEFAULT_TITLE
        fields["sector"] = fields.get("sector") or DEFAULT_SECTOR
        fields.setdefault("id", None)
        if "status" in fields:
            fields["status"] = TaskStatus(fields["status"])
        if "priority" in fields:
            fields["priority"] = TaskPriority(fields["priority"])
        if "tags" in fields:
            fields["tags"] = tuple(fields["tags"] or ())

        task = TaskEntity(
            **fields,
            is_recurring=True,
            recurrence_pattern=_coerce_rule(rule),
            parent_task_id=None,
        )
        created = self._repo.insert_task(task)
        logger.info("Created recurring task %s (%s)", created.id, created.recurrence_pattern.type)
        return created

    def complete_task(self, task_id: str) -> TaskEntity:
        task = self._repo.update_task(
            task_id,
            {"status": TaskStatus.COMPLETED, "completed_at": self._clock()},
        )
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def get_recurring_tasks(self) -> list[TaskEntity]:
        return self._repo.list_recurring_roots()

    def get_series(self, root_id: str) -> list[TaskEntity]:
        series = self._repo.list_series(root_id)
        if not series:
            raise TaskNotFoundError(root_id)
        return series

    def update_recurrence_pattern(
        self,
        task_id: str,
        rule: RecurrenceRule | dict[str, Any],
    ) -> TaskEntity:
        task = self._repo.update_task(task_id, {"recurrence_pattern": _coerce_rule(rule)})
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def stop_recurrence(self, task_id: str, now: Optional[datetime] = None) -> TaskEntity:
        """Cancel the root's upcoming occurrences and turn recurrence off."""
        if self._repo.get_task(task_id) is None:
            raise TaskNotFoundError(task_id)

        cancelled = self._repo.cancel_pending_occurrences_after(task_id, now or self._clock())
        task = self._repo.update_task(task_id, {"is_recurring": False})
        if task is None:
            raise TaskNotFoundError(task_id)
        logger.info("Stopped recurrence of task %s, cancelled %d occurrences", task_id, cancelled)
        return task

    def preview(self, task: TaskEntity, count: Optional[int] = None) -> list[datetime]:
        if task.recurrence_pattern is None or task.due_date is None:
            return []
        return next_due_dates(
            task.due_date,
            task.recurrence_pattern,
            self._preview_count if count is None else count,
            now=self._clock(),
        )


def _coerce_rule(rule: RecurrenceRule | dict[str, Any]) -> RecurrenceRule:
    if isinstance(rule, RecurrenceRule):
        return rule
    return RecurrenceRule.from_dict(rule)
