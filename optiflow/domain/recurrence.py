from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Optional

from .entities import RecurrenceRule
from .enums import RecurrenceType
from .errors import InvalidRuleError


def compute_next_due_date(
    last_due_date: datetime,
    rule: RecurrenceRule,
    now: datetime,
) -> Optional[datetime]:
    """Return the first due date of the series strictly after ``now``.

    Steps are taken from ``last_due_date`` one at a time, so a series that fell
    behind skips the missed occurrences instead of returning a past date.
    ``None`` means the series has ended: ``rule.end_date`` has already passed,
    or the next due date would land after it.
    """
    if not isinstance(rule, RecurrenceRule):
        raise InvalidRuleError(f"Expected a RecurrenceRule, got {type(rule).__name__}")

    if rule.end_date is not None and rule.end_date < now:
        return None

    anchor_day = rule.day_of_month or last_due_date.day
    candidate = _advance(last_due_date, rule, anchor_day)
    while candidate <= now:
        candidate = _advance(candidate, rule, anchor_day)

    if rule.end_date is not None and candidate > rule.end_date:
        return None
    return candidate


def next_due_dates(
    start: datetime,
    rule: RecurrenceRule,
    count: int,
    now: Optional[datetime] = None,
) -> list[datetime]:
    """Preview up to ``count`` due dates following ``start``.

    The start date itself counts towards ``rule.max_occurrences``. When ``now``
    is given, dates at or before it are skipped.
    """
    limit = max(count, 0)
    if rule.max_occurrences is not None:
        limit = min(limit, rule.max_occurrences - 1)

    anchor_day = rule.day_of_month or start.day
    dates: list[datetime] = []
    current = start
    while len(dates) < limit:
        current = _advance(current, rule, anchor_day)
        if now is not None and current <= now:
            continue
        if rule.end_date is not None and current > rule.end_date:
            break
        dates.append(current)
    return dates


def _advance(current: datetime, rule: RecurrenceRule, anchor_day: int) -> datetime:
    if rule.interval < 1:
        raise InvalidRuleError(f"Recurrence interval must be positive, got {rule.interval}")

    try:
        return _step(current, rule, anchor_day)
    except InvalidRuleError:
        raise
    except (OverflowError, ValueError) as exc:
        raise InvalidRuleError(f"Next due date after {current.isoformat()} is out of range") from exc


def _step(current: datetime, rule: RecurrenceRule, anchor_day: int) -> datetime:
    if rule.type == RecurrenceType.DAILY:
        return current + timedelta(days=rule.interval)
    if rule.type == RecurrenceType.WEEKLY:
        if not rule.days_of_week:
            return current + timedelta(weeks=rule.interval)
        return current + timedelta(days=_days_to_next_weekday(current, rule.days_of_week, rule.interval))
    if rule.type == RecurrenceType.MONTHLY:
        return add_months(current, rule.interval, day=anchor_day)
    raise InvalidRuleError(f"Unknown recurrence type: {rule.type!r}")


def _days_to_next_weekday(current: datetime, days_of_week: tuple[int, ...], interval: int) -> int:
    # Weeks start on Sunday (0), matching the stored weekday numbering.
    weekday = (current.weekday() + 1) % 7
    for target in days_of_week:
        if target > weekday:
            return target - weekday
    return interval * 7 - weekday + days_of_week[0]


def add_months(base: datetime, months: int, day: int | None = None) -> datetime:
    """Shift ``base`` by ``months``, clamping the day to the target month's length."""
    year = base.year + (base.month - 1 + months) // 12
    month = (base.month - 1 + months) % 12 + 1
    wanted = day if day is not None else base.day
    return base.replace(year=year, month=month, day=min(wanted, days_in_month(year, month)))


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - timedelta(days=1)).day
