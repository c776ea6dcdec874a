from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Optional

from .enums import RecurrenceType, TaskPriority, TaskStatus
from .errors import InvalidRuleError


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Coerce an ISO string, date or datetime into a naive UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, datetime.min.time())
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError as exc:
            raise InvalidRuleError(f"Invalid timestamp: {value!r}") from exc
    else:
        raise InvalidRuleError(f"Invalid timestamp: {value!r}")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def format_timestamp(value: Optional[datetime]) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class RecurrenceRule:
    """How successive due dates of a recurring series are spaced.

    ``days_of_week`` uses 0 for Sunday through 6 for Saturday and only applies
    to weekly rules; ``day_of_month`` only applies to monthly rules.
    """

    type: RecurrenceType
    interval: int = 1
    days_of_week: tuple[int, ...] = ()
    day_of_month: Optional[int] = None
    end_date: Optional[datetime] = None
    max_occurrences: Optional[int] = None

    def __post_init__(self) -> None:
        try:
            rule_type = RecurrenceType(self.type)
        except ValueError as exc:
            raise InvalidRuleError(f"Unknown recurrence type: {self.type!r}") from exc
        object.__setattr__(self, "type", rule_type)

        if not _is_int(self.interval) or self.interval < 1:
            raise InvalidRuleError(f"Recurrence interval must be a positive integer, got {self.interval!r}")

        raw_days = self.days_of_week or ()
        if not isinstance(raw_days, (list, tuple, set, frozenset)):
            raise InvalidRuleError(f"Days of week must be a list, got {raw_days!r}")
        if any(not _is_int(day) or not 0 <= day <= 6 for day in raw_days):
            raise InvalidRuleError(f"Days of week must be between 0 and 6, got {list(raw_days)!r}")
        days = tuple(sorted(set(raw_days)))
        if days and rule_type != RecurrenceType.WEEKLY:
            raise InvalidRuleError("Days of week only apply to weekly recurrence")
        object.__setattr__(self, "days_of_week", days)

        if self.day_of_month is not None:
            if rule_type != RecurrenceType.MONTHLY:
                raise InvalidRuleError("Day of month only applies to monthly recurrence")
            if not _is_int(self.day_of_month) or not 1 <= self.day_of_month <= 31:
                raise InvalidRuleError(f"Day of month must be between 1 and 31, got {self.day_of_month!r}")

        if self.max_occurrences is not None and (
            not _is_int(self.max_occurrences) or self.max_occurrences < 1
        ):
            raise InvalidRuleError(f"Max occurrences must be positive, got {self.max_occurrences!r}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RecurrenceRule:
        if not isinstance(data, dict):
            raise InvalidRuleError(f"Recurrence pattern must be an object, got {type(data).__name__}")
        try:
            rule_type = RecurrenceType(data.get("type"))
        except ValueError as exc:
            raise InvalidRuleError(f"Unknown recurrence type: {data.get('type')!r}") from exc

        days_of_week: tuple[int, ...] = ()
        if rule_type == RecurrenceType.WEEKLY:
            raw_days = data.get("daysOfWeek") or ()
            if not isinstance(raw_days, (list, tuple)):
                raise InvalidRuleError(f"Days of week must be a list, got {raw_days!r}")
            days_of_week = tuple(raw_days)

        day_of_month = None
        if rule_type == RecurrenceType.MONTHLY:
            day_of_month = data.get("dayOfMonth")

        return cls(
            type=rule_type,
            interval=data.get("interval", 1),
            days_of_week=days_of_week,
            day_of_month=day_of_month,
            end_date=parse_timestamp(data.get("endDate")),
            max_occurrences=data.get("maxOccurrences"),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type.value, "interval": self.interval}
        if self.days_of_week:
            data["daysOfWeek"] = list(self.days_of_week)
        if self.day_of_month is not None:
            data["dayOfMonth"] = self.day_of_month
        if self.end_date is not None:
            data["endDate"] = format_timestamp(self.end_date)
        if self.max_occurrences is not None:
            data["maxOccurrences"] = self.max_occurrences
        return data


@dataclass(frozen=True)
class TaskEntity:
    id: str | None
    title: str
    due_date: Optional[datetime]
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    description: str = ""
    sector: str = ""
    assigned_to: str | None = None
    created_by: str | None = None
    company_id: str | None = None
    tags: tuple[str, ...] = field(default_factory=tuple)
    estimated_hours: Optional[float] = None
    is_recurring: bool = False
    recurrence_pattern: Optional[RecurrenceRule] = None
    parent_task_id: str | None = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_root(self) -> bool:
        return self.parent_task_id is None
