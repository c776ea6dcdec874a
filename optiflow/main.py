from __future__ import annotations

import logging
import sys

from optiflow.config import get_settings
from optiflow.domain.errors import StoreReadError
from optiflow.infra.db import build_engine, build_session_factory, init_db
from optiflow.infra.logging import setup_logging
from optiflow.infra.repository import TaskRepository
from optiflow.services.recurring_task_service import RecurringTaskService

logger = logging.getLogger(__name__)


def main() -> int:
    settings = get_settings()
    setup_logging(settings)

    engine = build_engine(settings.database_url)
    try:
        init_db(engine)
    except Exception as exc:  # noqa: BLE001
        logger.error("DB error: %s", exc)
        return 1

    service = RecurringTaskService(
        TaskRepository(build_session_factory(engine)),
        preview_count=settings.occurrence_preview_count,
    )
    try:
        report = service.generate_recurring_tasks()
    except StoreReadError as exc:
        logger.error("Recurring task generation aborted: %s", exc)
        return 1
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
