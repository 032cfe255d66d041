"""initial asyncstand schema

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-19
"""

import uuid

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "3f1c2a9d7b10"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated: bool = True) -> list[sa.Column]:
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False))
    return cols


def _user_fk(name: str) -> sa.Column:
    return sa.Column(name, sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


def upgrade() -> None:
    # -----------------------------------------------------
    # 1) Users and organizations
    # -----------------------------------------------------
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("magic_code", sa.String(64), nullable=True),
        sa.Column("magic_code_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("full_name", sa.String(200), nullable=True),
        sa.Column("is_super_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "organizations",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "org_members",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(30), nullable=False, server_default="member"),
        sa.Column("status", sa.String(30), nullable=False, server_default="active"),
        sa.Column("permissions", sa.JSON(), nullable=False),
        _user_fk("invited_by_id"),
        *_timestamps(),
        sa.UniqueConstraint("org_id", "user_id", name="uq_org_members_org_user"),
    )
    op.create_index("ix_org_members_org_id", "org_members", ["org_id"])

    op.create_table(
        "org_invitations",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("role", sa.String(30), nullable=False, server_default="member"),
        sa.Column("token", sa.String(128), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _user_fk("invited_by_id"),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        _user_fk("accepted_by_user_id"),
        *_timestamps(updated=False),
    )
    op.create_index("ix_org_invitations_org_id", "org_invitations", ["org_id"])
    op.create_index("ix_org_invitations_token", "org_invitations", ["token"], unique=True)
    op.create_index(
        "uq_org_invitations_pending_org_email",
        "org_invitations",
        ["org_id", "email"],
        unique=True,
        postgresql_where=sa.text("accepted_at IS NULL"),
    )

    # -----------------------------------------------------
    # 2) Slack integrations and teams
    # -----------------------------------------------------
    op.create_table(
        "integrations",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("platform", sa.String(30), nullable=False, server_default="slack"),
        sa.Column("external_team_id", sa.String(64), nullable=False),
        sa.Column("workspace_name", sa.String(200), nullable=True),
        sa.Column("bot_token", sa.String(255), nullable=False),
        sa.Column("bot_user_id", sa.String(64), nullable=True),
        sa.Column("token_status", sa.String(20), nullable=False, server_default="ok"),
        sa.Column("scopes", sa.JSON(), nullable=False),
        _user_fk("installed_by_id"),
        *_timestamps(),
        sa.UniqueConstraint("platform", "external_team_id", name="uq_integrations_platform_external_team"),
    )
    op.create_index("ix_integrations_org_id", "integrations", ["org_id"])

    op.create_table(
        "teams",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "integration_id", sa.Uuid(), sa.ForeignKey("integrations.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("channel_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        _user_fk("created_by_id"),
        *_timestamps(),
        sa.UniqueConstraint("org_id", "name", name="uq_teams_org_name"),
    )
    op.create_index("ix_teams_org_id", "teams", ["org_id"])

    op.create_table(
        "team_members",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("team_id", sa.Uuid(), sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
        sa.Column("platform_user_id", sa.String(64), nullable=False),
        _user_fk("user_id"),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
        sa.UniqueConstraint("team_id", "platform_user_id", name="uq_team_members_team_platform_user"),
    )
    op.create_index("ix_team_members_team_id", "team_members", ["team_id"])
    op.create_index("ix_team_members_platform_user_id", "team_members", ["platform_user_id"])

    # -----------------------------------------------------
    # 3) Standups
    # -----------------------------------------------------
    op.create_table(
        "standup_configs",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("team_id", sa.Uuid(), sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("questions", sa.JSON(), nullable=False),
        sa.Column("weekdays", sa.JSON(), nullable=False),
        sa.Column("time_local", sa.String(5), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("reminder_minutes_before", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("response_timeout_hours", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("delivery_type", sa.String(30), nullable=False, server_default="direct_message"),
        sa.Column("target_channel_id", sa.String(64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _user_fk("created_by_id"),
        *_timestamps(),
        sa.UniqueConstraint("team_id", "name", name="uq_standup_configs_team_name"),
    )
    op.create_index("ix_standup_configs_team_id", "standup_configs", ["team_id"])

    op.create_table(
        "standup_config_members",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column(
            "config_id", sa.Uuid(), sa.ForeignKey("standup_configs.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column(
            "team_member_id", sa.Uuid(), sa.ForeignKey("team_members.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("include", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("config_id", "team_member_id", name="uq_standup_config_members_config_member"),
    )
    op.create_index("ix_standup_config_members_config_id", "standup_config_members", ["config_id"])

    op.create_table(
        "standup_instances",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("team_id", sa.Uuid(), sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "config_id", sa.Uuid(), sa.ForeignKey("standup_configs.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("config_snapshot", sa.JSON(), nullable=False),
        sa.Column("target_date", sa.Date(), nullable=False),
        sa.Column("state", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("reminder_message_ts", sa.String(64), nullable=True),
        sa.Column("summary_message_ts", sa.String(64), nullable=True),
        *_timestamps(updated=False),
        sa.UniqueConstraint("team_id", "config_id", "target_date", name="uq_standup_instances_team_config_date"),
    )
    op.create_index("ix_standup_instances_team_id", "standup_instances", ["team_id"])
    op.create_index("ix_standup_instances_reminder_message_ts", "standup_instances", ["reminder_message_ts"])

    op.create_table(
        "answers",
        sa.Column(
            "standup_instance_id",
            sa.Uuid(),
            sa.ForeignKey("standup_instances.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "team_member_id", sa.Uuid(), sa.ForeignKey("team_members.id", ondelete="CASCADE"), primary_key=True
        ),
        sa.Column("question_index", sa.Integer(), primary_key=True),
        sa.Column("text", sa.Text(), nullable=False, server_default=""),
        sa.Column("submitted_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "participation_snapshots",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column(
            "standup_instance_id",
            sa.Uuid(),
            sa.ForeignKey("standup_instances.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("answers_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("members_missing", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("captured_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "ix_participation_snapshots_standup_instance_id", "participation_snapshots", ["standup_instance_id"]
    )

    # -----------------------------------------------------
    # 4) Billing
    # -----------------------------------------------------
    plans = op.create_table(
        "plans",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("key", sa.String(50), nullable=False, unique=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("interval", sa.String(20), nullable=False, server_default="month"),
        sa.Column("stripe_price_id", sa.String(100), nullable=True, unique=True),
        sa.Column("member_limit", sa.Integer(), nullable=True),
        sa.Column("team_limit", sa.Integer(), nullable=True),
        sa.Column("standup_config_limit", sa.Integer(), nullable=True),
        sa.Column("standup_limit", sa.Integer(), nullable=True),
        sa.Column("storage_limit", sa.Integer(), nullable=True),
        sa.Column("integration_limit", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
    )

    op.create_table(
        "billing_accounts",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column(
            "org_id",
            sa.Uuid(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("stripe_customer_id", sa.String(100), nullable=True, unique=True),
        sa.Column("email", sa.String(320), nullable=True),
        *_timestamps(updated=False),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column(
            "billing_account_id",
            sa.Uuid(),
            sa.ForeignKey("billing_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("stripe_subscription_id", sa.String(100), nullable=True, unique=True),
        sa.Column("plan_id", sa.Uuid(), sa.ForeignKey("plans.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_subscriptions_billing_account_id", "subscriptions", ["billing_account_id"])

    # -----------------------------------------------------
    # 5) Feature flags
    # -----------------------------------------------------
    op.create_table(
        "features",
        sa.Column("key", sa.String(100), primary_key=True, nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("environments", sa.JSON(), nullable=False),
        sa.Column("rollout_type", sa.String(20), nullable=False, server_default="boolean"),
        sa.Column("rollout_value", sa.JSON(), nullable=True),
        sa.Column("category", sa.String(60), nullable=True),
        sa.Column("is_plan_based", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("requires_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )

    op.create_table(
        "feature_overrides",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "feature_key", sa.String(100), sa.ForeignKey("features.key", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
        sa.UniqueConstraint("org_id", "feature_key", name="uq_feature_overrides_org_feature"),
    )

    op.create_table(
        "plan_features",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("plan_id", sa.Uuid(), sa.ForeignKey("plans.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "feature_key", sa.String(100), sa.ForeignKey("features.key", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.UniqueConstraint("plan_id", "feature_key", name="uq_plan_features_plan_feature"),
    )

    # -----------------------------------------------------
    # 6) Audit log
    # -----------------------------------------------------
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        _user_fk("actor_user_id"),
        sa.Column("actor_type", sa.String(20), nullable=False, server_default="user"),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("category", sa.String(40), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False, server_default="info"),
        sa.Column("resource_type", sa.String(60), nullable=True),
        sa.Column("resource_id", sa.String(64), nullable=True),
        sa.Column("request_data", sa.JSON(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(400), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_org_created", "audit_logs", ["org_id", "created_at"])

    # -----------------------------------------------------
    # 7) Seed plans (stripe_price_id is set per environment)
    # -----------------------------------------------------
    op.bulk_insert(
        plans,
        [
            {
                "id": uuid.uuid4(),
                "key": "free",
                "name": "Free",
                "price_cents": 0,
                "interval": "month",
                "member_limit": 5,
                "team_limit": 2,
                "standup_config_limit": 5,
                "standup_limit": 50,
                "integration_limit": 1,
                "is_active": True,
            },
            {
                "id": uuid.uuid4(),
                "key": "pro",
                "name": "Pro",
                "price_cents": 2900,
                "interval": "month",
                "member_limit": 50,
                "team_limit": 20,
                "standup_config_limit": 50,
                "standup_limit": 2000,
                "integration_limit": 5,
                "is_active": True,
            },
            {
                "id": uuid.uuid4(),
                "key": "enterprise",
                "name": "Enterprise",
                "price_cents": 9900,
                "interval": "month",
                "member_limit": -1,
                "team_limit": -1,
                "standup_config_limit": -1,
                "standup_limit": -1,
                "integration_limit": -1,
                "is_active": True,
            },
        ],
    )


def downgrade() -> None:
    for table in (
        "audit_logs",
        "plan_features",
        "feature_overrides",
        "features",
        "subscriptions",
        "billing_accounts",
        "plans",
        "participation_snapshots",
        "answers",
        "standup_instances",
        "standup_config_members",
        "standup_configs",
        "team_members",
        "teams",
        "integrations",
        "org_invitations",
        "org_members",
        "organizations",
        "users",
    ):
        op.drop_table(table)
