from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from optiflow.domain.entities import RecurrenceRule, TaskEntity
from optiflow.domain.enums import TaskPriority, TaskStatus
from optiflow.domain.errors import InvalidRuleError, StoreReadError, StoreWriteError

from .models import TaskModel, utcnow

logger = logging.getLogger(__name__)

STATUS_COMPLETED = TaskStatus.COMPLETED.value
STATUS_CANCELLED = TaskStatus.CANCELLED.value


def _load_rule(model: TaskModel) -> Optional[RecurrenceRule]:
    if not model.recurrence_pattern:
        return None
    try:
        return RecurrenceRule.from_dict(json.loads(model.recurrence_pattern))
    except (json.JSONDecodeError, InvalidRuleError) as exc:
        logger.warning("Task %s has an unreadable recurrence pattern: %s", model.id, exc)
        return None


def _dump_rule(rule: Optional[RecurrenceRule]) -> str | None:
    return json.dumps(rule.to_dict()) if rule is not None else None


def _split_tags(raw: str | None) -> tuple[str, ...]:
    return tuple(tag.strip() for tag in (raw or "").split(",") if tag.strip())


def _to_entity(model: TaskModel) -> TaskEntity:
    return TaskEntity(
        id=model.id,
        title=model.title,
        description=model.description,
        status=TaskStatus(model.status),
        priority=TaskPriority(model.priority),
        sector=model.sector,
        assigned_to=model.assigned_to,
        created_by=model.created_by,
        company_id=model.company_id,
        tags=_split_tags(model.tags),
        estimated_hours=model.estimated_hours,
        due_date=model.due_date,
        is_recurring=model.is_recurring,
        recurrence_pattern=_load_rule(model),
        parent_task_id=model.parent_task_id,
        created_at=model.created_at,
        updated_at=model.updated_at,
        completed_at=model.completed_at,
    )


def _to_columns(data: dict[str, Any]) -> dict[str, Any]:
    columns = dict(data)
    if "recurrence_pattern" in columns:
        columns["recurrence_pattern"] = _dump_rule(columns["recurrence_pattern"])
    if "tags" in columns and not isinstance(columns["tags"], str):
        columns["tags"] = ",".join(columns["tags"] or ())
    for key in ("status", "priority"):
        value = columns.get(key)
        if isinstance(value, (TaskStatus, TaskPriority)):
            columns[key] = value.value
    return columns


@contextmanager
def _store_errors(error_cls: type[Exception], action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise error_cls(f"Failed to {action}: {exc}") from exc


class TaskRepository:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def list_completed_recurring_root_tasks(self) -> list[TaskEntity]:
        with _store_errors(StoreReadError, "list completed recurring tasks"):
            with self._session_factory() as session:
                stmt = (
                    select(TaskModel)
                    .where(
                        TaskModel.is_recurring.is_(True),
                        TaskModel.status == STATUS_COMPLETED,
                        TaskModel.parent_task_id.is_(None),
                    )
                    .order_by(TaskModel.due_date.asc())
                )
                return [_to_entity(task) for task in session.scalars(stmt)]

    def exists_occurrence(self, parent_task_id: str, due_date: datetime) -> bool:
        with _store_errors(StoreWriteError, f"check occurrences of task {parent_task_id}"):
            with self._session_factory() as session:
                found = session.scalar(
                    select(TaskModel.id)
                    .where(
                        TaskModel.parent_task_id == parent_task_id,
                        TaskModel.due_date == due_date,
                    )
                    .limit(1)
                )
                return found is not None

    def count_occurrences(self, parent_task_id: str) -> int:
        with _store_errors(StoreWriteError, f"count occurrences of task {parent_task_id}"):
            with self._session_factory() as session:
                return session.scalar(
                    select(func.count())
                    .select_from(TaskModel)
                    .where(TaskModel.parent_task_id == parent_task_id)
                ) or 0

    def insert_task(self, task: TaskEntity) -> TaskEntity:
        data = {
            "title": task.title,
            "description": task.description,
            "status": task.status,
            "priority": task.priority,
            "sector": task.sector,
            "assigned_to": task.assigned_to,
            "created_by": task.created_by,
            "company_id": task.company_id,
            "tags": task.tags,
            "estimated_hours": task.estimated_hours,
            "due_date": task.due_date,
            "is_recurring": task.is_recurring,
            "recurrence_pattern": task.recurrence_pattern,
            "parent_task_id": task.parent_task_id,
            "completed_at": task.completed_at,
        }
        if task.id is not None:
            data["id"] = task.id

        try:
            with self._session_factory() as session:
                model = TaskModel(**_to_columns(data))
                session.add(model)
                session.commit()
                session.refresh(model)
                return _to_entity(model)
        except IntegrityError as exc:
            raise StoreWriteError(
                f"Task {task.parent_task_id or task.id} already has an entry due {task.due_date}"
            ) from exc
        except SQLAlchemyError as exc:
            raise StoreWriteError(f"Failed to insert task {task.title!r}: {exc}") from exc

    def get_task(self, task_id: str) -> Optional[TaskEntity]:
        with _store_errors(StoreReadError, f"load task {task_id}"):
            with self._session_factory() as session:
                task = session.get(TaskModel, task_id)
                return _to_entity(task) if task else None

    def update_task(self, task_id: str, data: dict[str, Any]) -> Optional[TaskEntity]:
        with _store_errors(StoreWriteError, f"update task {task_id}"):
            with self._session_factory() as session:
                task = session.get(TaskModel, task_id)
                if not task:
                    return None

                for key, value in _to_columns(data).items():
                    setattr(task, key, value)
                session.commit()
                session.refresh(task)
                return _to_entity(task)

    def list_recurring_roots(self) -> list[TaskEntity]:
        with _store_errors(StoreReadError, "list recurring tasks"):
            with self._session_factory() as session:
                stmt = (
                    select(TaskModel)
                    .where(
                        TaskModel.is_recurring.is_(True),
                        TaskModel.parent_task_id.is_(None),
                    )
                    .order_by(TaskModel.created_at.desc())
                )
                return [_to_entity(task) for task in session.scalars(stmt)]

    def list_series(self, root_id: str) -> list[TaskEntity]:
        with _store_errors(StoreReadError, f"list series of task {root_id}"):
            with self._session_factory() as session:
                stmt = (
                    select(TaskModel)
                    .where((TaskModel.id == root_id) | (TaskModel.parent_task_id == root_id))
                    .order_by(
                        TaskModel.parent_task_id.is_not(None),
                        TaskModel.due_date.asc(),
                    )
                )
                return [_to_entity(task) for task in session.scalars(stmt)]

    def cancel_pending_occurrences_after(self, parent_task_id: str, after: datetime) -> int:
        with _store_errors(StoreWriteError, f"cancel occurrences of task {parent_task_id}"):
            with self._session_factory() as session:
                result = session.execute(
                    update(TaskModel)
                    .where(
                        TaskModel.parent_task_id == parent_task_id,
                        TaskModel.due_date > after,
                        TaskModel.status.notin_([STATUS_COMPLETED, STATUS_CANCELLED]),
                    )
                    .values(status=STATUS_CANCELLED, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                session.commit()
                return result.rowcount or 0
