"""quests_reminders_reports

Add quest, quest_recipient, reminder_state, report_definition and accounting_sync tables.

Revision ID: 002
Revises: 001
Create Date: 2026-03-09

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "quest",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("job_id", sa.Integer(), nullable=True),
        sa.Column("mode", sa.String(), nullable=False, server_default="standard"),
        sa.Column("status", sa.String(), nullable=False, server_default="ready"),
        sa.Column("subject", sa.String(), nullable=False, server_default=""),
        sa.Column("body", sa.Text(), nullable=False, server_default=""),
        sa.Column("database_id", sa.Integer(), nullable=True),
        sa.Column("email_column_key", sa.String(), nullable=True),
        sa.Column("send_timing", sa.String(), nullable=False, server_default="immediate"),
        sa.Column("send_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("schedule_config", JSONB(), nullable=True),
        sa.Column("scheduled_for", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("reminders_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reminder_frequency_days", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("reminder_stop_condition", sa.String(), nullable=False, server_default="reply_or_deadline"),
        sa.Column("reminder_max_count", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("deadline", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("sent_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("executed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["job_id"], ["job.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["database_id"], ["data_database.id"], ondelete="SET NULL"),
    )
    op.create_index(op.f("ix_quest_job_id"), "quest", ["job_id"], unique=False)
    op.create_index("ix_quest_status_scheduled_for", "quest", ["status", "scheduled_for"], unique=False)

    op.create_table(
        "quest_recipient",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("quest_id", sa.Integer(), nullable=False),
        sa.Column("contact_id", sa.Integer(), nullable=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("token", sa.String(), nullable=False),
        sa.Column("personalization", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("rendered_subject", sa.String(), nullable=True),
        sa.Column("rendered_body", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("message_id", sa.String(), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("sent_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("replied_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["quest_id"], ["quest.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["contact_id"], ["contact.id"], ondelete="SET NULL"),
    )
    op.create_index(op.f("ix_quest_recipient_quest_id"), "quest_recipient", ["quest_id"], unique=False)
    op.create_index(op.f("ix_quest_recipient_token"), "quest_recipient", ["token"], unique=False)

    op.create_table(
        "reminder_state",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("recipient_id", sa.Integer(), nullable=False),
        sa.Column("sent_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_count", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("frequency_hours", sa.Integer(), nullable=False, server_default="72"),
        sa.Column("next_send_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_sent_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("stopped_reason", sa.String(), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["recipient_id"], ["quest_recipient.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("recipient_id"),
    )
    op.create_index(op.f("ix_reminder_state_next_send_at"), "reminder_state", ["next_send_at"], unique=False)

    op.create_table(
        "report_definition",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("database_id", sa.Integer(), nullable=False),
        sa.Column("cadence", sa.String(), nullable=False, server_default="monthly"),
        sa.Column("date_column_key", sa.String(), nullable=False),
        sa.Column("compare_mode", sa.String(), nullable=False, server_default="none"),
        sa.Column("columns", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("formula_rows", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["database_id"], ["data_database.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "accounting_sync",
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="idle"),
        sa.Column("last_started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_finished_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_error", sa.String(), nullable=True),
        sa.Column("counts", JSONB(), nullable=True),
        sa.PrimaryKeyConstraint("key"),
    )
    op.execute(sa.text("UPDATE system_metadata SET value = '2' WHERE key = 'schema_version'"))


def downgrade() -> None:
    op.execute(sa.text("UPDATE system_metadata SET value = '1' WHERE key = 'schema_version'"))
    op.drop_table("accounting_sync")
    op.drop_table("report_definition")
    op.drop_table("reminder_state")
    op.drop_table("quest_recipient")
    op.drop_table("quest")
