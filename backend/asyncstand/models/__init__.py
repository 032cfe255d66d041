# Import models here so Alembic can discover metadata.
from asyncstand.models.user import User  # noqa: F401

# Organizations, members, invitations
from asyncstand.models.organization import Organization  # noqa: F401
from asyncstand.models.org_member import OrgMember  # noqa: F401
from asyncstand.models.org_invitation import OrgInvitation  # noqa: F401

# Slack workspaces, teams
from asyncstand.models.integration import Integration  # noqa: F401
from asyncstand.models.team import Team, TeamMember  # noqa: F401
from asyncstand.models.slack_event import SlackEventReceipt  # noqa: F401

# Standups
from asyncstand.models.standup_config import StandupConfig, StandupConfigMember  # noqa: F401
from asyncstand.models.standup_instance import Answer, ParticipationSnapshot, StandupInstance  # noqa: F401

# Billing, features, audit
from asyncstand.models.billing import BillingAccount, Plan, Subscription  # noqa: F401
from asyncstand.models.feature import Feature, FeatureOverride, PlanFeature  # noqa: F401
from asyncstand.models.audit_log import AuditLog  # noqa: F401
