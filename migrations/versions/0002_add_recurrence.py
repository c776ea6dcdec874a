"""add recurrence fields and occurrence uniqueness"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0002_add_recurrence"
down_revision = "0001_create_tasks"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "tasks",
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    op.add_column("tasks", sa.Column("recurrence_pattern", sa.Text(), nullable=True))
    op.add_column(
        "tasks",
        sa.Column(
            "parent_task_id",
            sa.String(length=36),
            sa.ForeignKey("tasks.id", ondelete="CASCADE"),
            nullable=True,
        ),
    )
    op.create_index("ix_tasks_is_recurring", "tasks", ["is_recurring"], unique=False)
    op.create_index("ix_tasks_parent_task_id", "tasks", ["parent_task_id"], unique=False)
    op.create_unique_constraint(
        "uq_tasks_parent_due_date", "tasks", ["parent_task_id", "due_date"]
    )


def downgrade() -> None:
    op.drop_constraint("uq_tasks_parent_due_date", "tasks", type_="unique")
    op.drop_index("ix_tasks_parent_task_id", table_name="tasks")
    op.drop_index("ix_tasks_is_recurring", table_name="tasks")
    op.drop_column("tasks", "parent_task_id")
    op.drop_column("tasks", "recurrence_pattern")
    op.drop_column("tasks", "is_recurring")
