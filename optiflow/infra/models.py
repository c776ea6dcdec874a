from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
)

from .db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class TaskModel(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        UniqueConstraint("parent_task_id", "due_date", name="uq_tasks_parent_due_date"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    status = Column(String(20), nullable=False, default="pending", index=True)
    priority = Column(String(20), nullable=False, default="medium")
    sector = Column(String(100), nullable=False, default="")
    assigned_to = Column(String(36), nullable=True)
    created_by = Column(String(36), nullable=True)
    company_id = Column(String(36), nullable=True, index=True)
    tags = Column(Text, nullable=False, default="")
    estimated_hours = Column(Float, nullable=True)
    due_date = Column(DateTime, nullable=True)
    is_recurring = Column(Boolean, nullable=False, default=False, index=True)
    recurrence_pattern = Column(Text, nullable=True)
    parent_task_id = Column(
        String(36),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime, nullable=True)
