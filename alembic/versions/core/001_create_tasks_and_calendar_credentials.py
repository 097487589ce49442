"""create_tasks_and_calendar_credentials

Revision ID: core_001
Revises:
Create Date: 2025-01-01 00:00:00.000000

"""

from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "core_001"
down_revision = None
branch_labels = ("core",)
depends_on = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS tasks (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            title TEXT NOT NULL CHECK (length(btrim(title)) > 0),
            description TEXT,
            due_date BIGINT,
            due_time TEXT,
            priority TEXT NOT NULL DEFAULT 'medium'
                CHECK (priority IN ('low', 'medium', 'high')),
            completed BOOLEAN NOT NULL DEFAULT false,
            category TEXT,
            reminder_sent BOOLEAN NOT NULL DEFAULT false,
            google_event_id TEXT,
            outlook_event_id TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_tasks_completed ON tasks (completed)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_tasks_due_date ON tasks (due_date)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS calendar_credentials (
            user_id TEXT NOT NULL,
            provider TEXT NOT NULL CHECK (provider IN ('google', 'outlook')),
            access_token TEXT NOT NULL,
            refresh_token TEXT,
            expires_at BIGINT NOT NULL,
            calendar_id TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (user_id, provider)
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS calendar_credentials")
    op.execute("DROP INDEX IF EXISTS ix_tasks_due_date")
    op.execute("DROP INDEX IF EXISTS ix_tasks_completed")
    op.execute("DROP TABLE IF EXISTS tasks")
