"""close_timestamps

Add board.closed_at and job.completed_at for close retrospectives.

Revision ID: 003
Revises: 002
Create Date: 2026-10-19

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("board", sa.Column("closed_at", sa.TIMESTAMP(timezone=True), nullable=True))
    op.add_column("job", sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True))
    # Existing finished rows get their last update as a best guess
    op.execute(sa.text("UPDATE board SET closed_at = updated_at WHERE status IN ('complete', 'closed')"))
    op.execute(sa.text("UPDATE job SET completed_at = updated_at WHERE status = 'complete'"))
    op.execute(sa.text("UPDATE system_metadata SET value = '3' WHERE key = 'schema_version'"))


def downgrade() -> None:
    op.execute(sa.text("UPDATE system_metadata SET value = '2' WHERE key = 'schema_version'"))
    op.drop_column("job", "completed_at")
    op.drop_column("board", "closed_at")
