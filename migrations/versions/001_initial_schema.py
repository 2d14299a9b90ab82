"""initial_schema

Databases, contacts, boards, jobs, worker_status and system_metadata.

Revision ID: 001
Revises:
Create Date: 2026-03-02

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    op.create_table(
        "data_database",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("columns", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("schema_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("identifier_keys", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("rows", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("row_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("source", sa.String(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.Column("last_imported_at", sa.TIMESTAMP(timezone=True), nullable=True),
    )

    op.create_table(
        "contact",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("company", sa.String(), nullable=True),
        sa.Column("contact_type", sa.String(), nullable=False, server_default="unknown"),
        sa.Column("remote_id", sa.String(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("email", name="uq_contact_email"),
    )
    op.create_index(op.f("ix_contact_remote_id"), "contact", ["remote_id"], unique=False)

    op.create_table(
        "contact_group",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("color", sa.String(), nullable=True),
        _created_at(),
        sa.UniqueConstraint("name", name="uq_contact_group_name"),
    )

    op.create_table(
        "contact_group_member",
        sa.Column("group_id", sa.Integer(), nullable=False),
        sa.Column("contact_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["group_id"], ["contact_group.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["contact_id"], ["contact.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("group_id", "contact_id"),
    )

    op.create_table(
        "contact_tag",
        sa.Column("contact_id", sa.Integer(), nullable=False),
        sa.Column("tag_key", sa.String(), nullable=False),
        sa.Column("metadata", JSONB(), nullable=True),
        _updated_at(),
        sa.ForeignKeyConstraint(["contact_id"], ["contact.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("contact_id", "tag_key"),
    )

    op.create_table(
        "board",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="not_started"),
        sa.Column("cadence", sa.String(), nullable=False, server_default="ad_hoc"),
        sa.Column("period_start", sa.Date(), nullable=True),
        sa.Column("period_end", sa.Date(), nullable=True),
        sa.Column("owner", sa.String(), nullable=True),
        sa.Column("automation_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("skip_weekends", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_board_cadence_period_start", "board", ["cadence", "period_start"], unique=False)

    op.create_table(
        "job",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("board_id", sa.Integer(), nullable=True),
        sa.Column("lineage_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="not_started"),
        sa.Column("owner", sa.String(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("labels", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("is_snapshot", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["board_id"], ["board.id"], ondelete="CASCADE"),
    )
    op.create_index(op.f("ix_job_board_id"), "job", ["board_id"], unique=False)
    op.create_index(op.f("ix_job_lineage_id"), "job", ["lineage_id"], unique=False)

    op.create_table(
        "job_stakeholder",
        sa.Column("job_id", sa.Integer(), nullable=False),
        sa.Column("contact_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["job_id"], ["job.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["contact_id"], ["contact.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("job_id", "contact_id"),
    )

    op.create_table(
        "job_comment",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("job_id", sa.Integer(), nullable=False),
        sa.Column("author", sa.String(), nullable=True),
        sa.Column("content", sa.String(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["job_id"], ["job.id"], ondelete="CASCADE"),
    )
    op.create_index(op.f("ix_job_comment_job_id"), "job_comment", ["job_id"], unique=False)

    op.create_table(
        "worker_status",
        sa.Column("worker_id", sa.String(), nullable=False),
        sa.Column("hostname", sa.String(), nullable=False, server_default=""),
        sa.Column("last_seen_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("state", sa.String(), nullable=False),
        sa.Column("command", sa.String(), nullable=False),
        sa.Column("stats", JSONB(), nullable=True),
        sa.PrimaryKeyConstraint("worker_id"),
    )

    op.create_table(
        "system_metadata",
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("value", sa.String(), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )
    op.execute(
        sa.text("INSERT INTO system_metadata (key, value) VALUES ('schema_version', '1')")
    )


def downgrade() -> None:
    op.drop_table("system_metadata")
    op.drop_table("worker_status")
    op.drop_table("job_comment")
    op.drop_table("job_stakeholder")
    op.drop_table("job")
    op.drop_table("board")
    op.drop_table("contact_tag")
    op.drop_table("contact_group_member")
    op.drop_table("contact_group")
    op.drop_table("contact")
    op.drop_table("data_database")
