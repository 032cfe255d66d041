"""standup follow-up reminders and slack event receipts

Revision ID: 8d4e2b7c91a3
Revises: 3f1c2a9d7b10
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "8d4e2b7c91a3"
down_revision = "3f1c2a9d7b10"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "standup_instances",
        sa.Column("reminders_sent", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
    )

    op.create_table(
        "slack_event_receipts",
        sa.Column("event_id", sa.String(64), primary_key=True, nullable=False),
        sa.Column("team_id", sa.String(64), nullable=False, server_default=""),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_slack_event_receipts_received_at", "slack_event_receipts", ["received_at"])


def downgrade() -> None:
    op.drop_index("ix_slack_event_receipts_received_at", table_name="slack_event_receipts")
    op.drop_table("slack_event_receipts")
    op.drop_column("standup_instances", "reminders_sent")
