from __future__ import annotations

from dataclasses import replace
from datetime import datetime

import pytest

from optiflow.domain.entities import RecurrenceRule, TaskEntity
from optiflow.domain.enums import RecurrenceType, TaskPriority, TaskStatus
from optiflow.domain.errors import StoreReadError, StoreWriteError, TaskNotFoundError
from optiflow.services.recurring_task_service import RecurringTaskService

NOW = datetime(2024, 1, 10, 8, 0)
DAILY = RecurrenceRule(type=RecurrenceType.DAILY, interval=1)


class FakeRepo:
    def __init__(self) -> None:
        self.tasks: list[TaskEntity] = []
        self._id = 1
        self.fail_insert_for: set[str] = set()
        self.fail_list = False

    def add(self, **fields) -> TaskEntity:
        fields.setdefault("title", "Weekly report")
        fields.setdefault("due_date", datetime(2024, 1, 10, 9, 0))
        task = TaskEntity(id=f"t{self._id}", **fields)
        self._id += 1
        self.tasks.append(task)
        return task

    def list_completed_recurring_root_tasks(self) -> list[TaskEntity]:
        if self.fail_list:
            raise StoreReadError("connection refused")
        return [
            t for t in self.tasks
            if t.is_recurring and t.status == TaskStatus.COMPLETED and t.parent_task_id is None
        ]

    def exists_occurrence(self, parent_task_id: str, due_date: datetime) -> bool:
        return any(t.parent_task_id == parent_task_id and t.due_date == due_date for t in self.tasks)

    def count_occurrences(self, parent_task_id: str) -> int:
        return sum(1 for t in self.tasks if t.parent_task_id == parent_task_id)

    def insert_task(self, task: TaskEntity) -> TaskEntity:
        if task.parent_task_id in self.fail_insert_for:
            raise StoreWriteError("insert rejected")
        created = replace(task, id=f"t{self._id}", created_at=NOW, updated_at=NOW)
        self._id += 1
        self.tasks.append(created)
        return created

    def get_task(self, task_id: str) -> TaskEntity | None:
        return next((t for t in self.tasks if t.id == task_id), None)

    def update_task(self, task_id: str, data: dict) -> TaskEntity | None:
        task = self.get_task(task_id)
        if not task:
            return None
        updated = replace(task, **data)
        self.tasks = [updated if t.id == task_id else t for t in self.tasks]
        return updated

    def list_recurring_roots(self) -> list[TaskEntity]:
        return [t for t in self.tasks if t.is_recurring and t.parent_task_id is None]

    def list_series(self, root_id: str) -> list[TaskEntity]:
        root = [t for t in self.tasks if t.id == root_id]
        children = sorted(
            (t for t in self.tasks if t.parent_task_id == root_id),
            key=lambda t: t.due_date,
        )
        return root + children

    def cancel_pending_occurrences_after(self, parent_task_id: str, after: datetime) -> int:
        cancelled = 0
        for task in list(self.tasks):
            if (
                task.parent_task_id == parent_task_id
                and task.due_date > after
                and task.status not in (TaskStatus.COMPLETED, TaskStatus.CANCELLED)
            ):
                self.update_task(task.id, {"status": TaskStatus.CANCELLED})
                cancelled += 1
        return cancelled


def _service(repo: FakeRepo, now: datetime = NOW) -> RecurringTaskService:
    return RecurringTaskService(repo, clock=lambda: now)


def _completed_root(repo: FakeRepo, rule: RecurrenceRule = DAILY, **fields) -> TaskEntity:
    return repo.add(
        status=TaskStatus.COMPLETED,
        is_recurring=True,
        recurrence_pattern=rule,
        **fields,
    )


def test_generates_next_occurrence_linked_to_root() -> None:
    repo = FakeRepo()
    root = _completed_root(
        repo,
        description="Send numbers",
        priority=TaskPriority.HIGH,
        sector="Finance",
        assigned_to="u1",
        tags=("report",),
    )

    report = _service(repo).generate_recurring_tasks()

    assert len(report.created) == 1
    occurrence = report.created[0]
    assert occurrence.parent_task_id == root.id
    assert occurrence.due_date == datetime(2024, 1, 11, 9, 0)
    assert occurrence.status == TaskStatus.PENDING
    assert occurrence.is_recurring
    assert occurrence.recurrence_pattern == DAILY
    assert occurrence.title == root.title
    assert occurrence.description == "Send numbers"
    assert occurrence.priority == TaskPriority.HIGH
    assert occurrence.sector == "Finance"
    assert occurrence.assigned_to == "u1"
    assert occurrence.tags == ("report",)
    assert occurrence.completed_at is None
    assert repo.get_task(root.id) == root


def test_second_run_creates_nothing() -> None:
    repo = FakeRepo()
    root = _completed_root(repo)
    service = _service(repo)

    service.generate_recurring_tasks()
    report = service.generate_recurring_tasks()

    assert report.created == []
    assert report.skipped == {root.id: "already generated"}
    assert len(repo.tasks) == 2


def test_existing_occurrence_prevents_duplicate() -> None:
    repo = FakeRepo()
    root = _completed_root(repo)
    repo.add(
        status=TaskStatus.PENDING,
        is_recurring=True,
        recurrence_pattern=DAILY,
        parent_task_id=root.id,
        due_date=datetime(2024, 1, 11, 9, 0),
    )

    report = _service(repo).generate_recurring_tasks()

    assert report.created == []
    assert repo.count_occurrences(root.id) == 1


def test_ended_series_creates_nothing() -> None:
    repo = FakeRepo()
    rule = RecurrenceRule(type=RecurrenceType.DAILY, interval=1, end_date=datetime(2024, 1, 5))
    root = _completed_root(repo, rule=rule)

    report = _service(repo).generate_recurring_tasks()

    assert report.created == []
    assert report.skipped == {root.id: "series ended"}


def test_max_occurrences_counts_root() -> None:
    repo = FakeRepo()
    rule = RecurrenceRule(type=RecurrenceType.DAILY, interval=1, max_occurrences=2)
    root = _completed_root(repo, rule=rule)
    repo.add(
        status=TaskStatus.COMPLETED,
        is_recurring=True,
        recurrence_pattern=rule,
        parent_task_id=root.id,
        due_date=datetime(2024, 1, 9, 9, 0),
    )

    report = _service(repo).generate_recurring_tasks()

    assert report.created == []
    assert report.skipped == {root.id: "max occurrences reached"}


def test_only_completed_roots_are_scanned() -> None:
    repo = FakeRepo()
    repo.add(status=TaskStatus.PENDING, is_recurring=True, recurrence_pattern=DAILY)
    root = _completed_root(repo)
    _completed_root(repo, parent_task_id=root.id, due_date=datetime(2024, 1, 3))
    repo.add(status=TaskStatus.COMPLETED, is_recurring=False)

    report = _service(repo).generate_recurring_tasks()

    assert [t.parent_task_id for t in report.created] == [root.id]


def test_root_without_pattern_is_skipped() -> None:
    repo = FakeRepo()
    root = repo.add(status=TaskStatus.COMPLETED, is_recurring=True)

    report = _service(repo).generate_recurring_tasks()

    assert report.skipped == {root.id: "no recurrence pattern"}


def test_write_failure_does_not_abort_batch() -> None:
    repo = FakeRepo()
    broken = _completed_root(repo)
    healthy = _completed_root(repo, title="Standup")
    repo.fail_insert_for.add(broken.id)

    report = _service(repo).generate_recurring_tasks()

    assert list(report.failed) == [broken.id]
    assert [t.parent_task_id for t in report.created] == [healthy.id]


def test_read_failure_propagates() -> None:
    repo = FakeRepo()
    repo.fail_list = True

    with pytest.raises(StoreReadError):
        _service(repo).generate_recurring_tasks()


def test_stale_root_jumps_past_now() -> None:
    repo = FakeRepo()
    _completed_root(repo, due_date=datetime(2024, 1, 1, 9, 0))

    report = _service(repo, now=datetime(2024, 3, 1, 12, 0)).generate_recurring_tasks()

    assert report.created[0].due_date == datetime(2024, 3, 2, 9, 0)


def test_create_recurring_task_applies_defaults() -> None:
    repo = FakeRepo()

    task = _service(repo).create_recurring_task(
        {"due_date": "2024-01-15T09:00:00", "priority": "urgent", "is_recurring": False},
        {"type": "monthly", "interval": 1, "dayOfMonth": 15},
    )

    assert task.title == "Tarefa Recorrente"
    assert task.sector == "Geral"
    assert task.is_recurring
    assert task.is_root
    assert task.priority == TaskPriority.URGENT
    assert task.due_date == datetime(2024, 1, 15, 9, 0)
    assert task.recurrence_pattern == RecurrenceRule(
        type=RecurrenceType.MONTHLY, interval=1, day_of_month=15
    )


def test_complete_then_generate() -> None:
    repo = FakeRepo()
    root = repo.add(status=TaskStatus.IN_PROGRESS, is_recurring=True, recurrence_pattern=DAILY)
    service = _service(repo)

    completed = service.complete_task(root.id)
    report = service.generate_recurring_tasks()

    assert completed.status == TaskStatus.COMPLETED
    assert completed.completed_at == NOW
    assert len(report.created) == 1


def test_update_recurrence_pattern_replaces_rule() -> None:
    repo = FakeRepo()
    root = _completed_root(repo)

    updated = _service(repo).update_recurrence_pattern(root.id, {"type": "weekly", "interval": 2})

    assert updated.recurrence_pattern == RecurrenceRule(type=RecurrenceType.WEEKLY, interval=2)


def test_update_recurrence_pattern_unknown_task() -> None:
    with pytest.raises(TaskNotFoundError):
        _service(FakeRepo()).update_recurrence_pattern("missing", DAILY)


def test_stop_recurrence_cancels_future_occurrences() -> None:
    repo = FakeRepo()
    root = _completed_root(repo)
    past = repo.add(
        status=TaskStatus.PENDING,
        parent_task_id=root.id,
        due_date=datetime(2024, 1, 9, 9, 0),
    )
    future = repo.add(
        status=TaskStatus.PENDING,
        parent_task_id=root.id,
        due_date=datetime(2024, 1, 11, 9, 0),
    )

    stopped = _service(repo).stop_recurrence(root.id)

    assert not stopped.is_recurring
    assert repo.get_task(future.id).status == TaskStatus.CANCELLED
    assert repo.get_task(past.id).status == TaskStatus.PENDING


def test_get_series_orders_root_first() -> None:
    repo = FakeRepo()
    root = _completed_root(repo)
    later = repo.add(parent_task_id=root.id, due_date=datetime(2024, 1, 20))
    sooner = repo.add(parent_task_id=root.id, due_date=datetime(2024, 1, 12))

    series = _service(repo).get_series(root.id)

    assert [t.id for t in series] == [root.id, sooner.id, later.id]


def test_get_series_unknown_root() -> None:
    with pytest.raises(TaskNotFoundError):
        _service(FakeRepo()).get_series("missing")


def test_preview_lists_upcoming_dates() -> None:
    repo = FakeRepo()
    root = _completed_root(repo)

    dates = _service(repo).preview(root, count=2)

    assert dates == [datetime(2024, 1, 11, 9, 0), datetime(2024, 1, 12, 9, 0)]


def test_invalid_rule_fails_only_its_root() -> None:
    repo = FakeRepo()
    broken_rule = RecurrenceRule(type=RecurrenceType.DAILY, interval=1)
    object.__setattr__(broken_rule, "interval", 0)
    broken = _completed_root(repo, rule=broken_rule)
    healthy = _completed_root(repo, title="Standup")

    report = _service(repo).generate_recurring_tasks()

    assert list(report.failed) == [broken.id]
    assert "interval" in report.failed[broken.id]
    assert [t.parent_task_id for t in report.created] == [healthy.id]


def test_due_date_out_of_range_fails_only_its_root() -> None:
    repo = FakeRepo()
    never = _completed_root(repo, due_date=datetime(9999, 12, 31))
    healthy = _completed_root(repo, title="Standup")

    report = _service(repo).generate_recurring_tasks()

    assert list(report.failed) == [never.id]
    assert [t.parent_task_id for t in report.created] == [healthy.id]
