from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Iterable, Mapping

ROLE_OWNER = "owner"
ROLE_ADMIN = "admin"
ROLE_MEMBER = "member"

ORG_ROLES = {ROLE_OWNER, ROLE_ADMIN, ROLE_MEMBER}


@dataclass(frozen=True)
class Permission:
    # org.*
    ORG_READ: str = "org.read"
    ORG_WRITE: str = "org.write"
    ORG_MEMBERS_READ: str = "org.members.read"
    ORG_MEMBERS_WRITE: str = "org.members.write"
    ORG_INVITES_MANAGE: str = "org.invites.manage"

    # integrations.*
    INTEGRATIONS_READ: str = "integrations.read"
    INTEGRATIONS_WRITE: str = "integrations.write"

    # teams.*
    TEAMS_READ: str = "teams.read"
    TEAMS_WRITE: str = "teams.write"

    # standups.*
    STANDUPS_READ: str = "standups.read"
    STANDUPS_WRITE: str = "standups.write"
    STANDUPS_RESPOND: str = "standups.respond"

    # billing.*
    BILLING_READ: str = "billing.read"
    BILLING_WRITE: str = "billing.write"

    # audit.*
    AUDIT_READ: str = "audit.read"
    AUDIT_EXPORT: str = "audit.export"

    # features.*
    FEATURES_READ: str = "features.read"

    # wildcards (domain-level)
    ORG_ALL: str = "org.*"
    INTEGRATIONS_ALL: str = "integrations.*"
    TEAMS_ALL: str = "teams.*"
    STANDUPS_ALL: str = "standups.*"
    BILLING_ALL: str = "billing.*"
    AUDIT_ALL: str = "audit.*"
    FEATURES_ALL: str = "features.*"


PERM = Permission()

ROLE_BASE_PERMISSIONS: Mapping[str, FrozenSet[str]] = {
    ROLE_ADMIN: frozenset(
        {
            PERM.ORG_ALL,
            PERM.INTEGRATIONS_ALL,
            PERM.TEAMS_ALL,
            PERM.STANDUPS_ALL,
            PERM.AUDIT_ALL,
            PERM.FEATURES_ALL,
            # billing changes stay with the owner unless granted explicitly
            PERM.BILLING_READ,
        }
    ),
    ROLE_MEMBER: frozenset(
        {
            PERM.ORG_READ,
            PERM.TEAMS_READ,
            PERM.STANDUPS_READ,
            PERM.STANDUPS_RESPOND,
            PERM.FEATURES_READ,
        }
    ),
}


def normalize_role(role: str | None) -> str:
    return (role or "").strip().lower()


def _normalize_extras(extra: Iterable[str] | None) -> FrozenSet[str]:
    if not extra:
        return frozenset()
    return frozenset(p.strip() for p in extra if isinstance(p, str) and p.strip())


def effective_permissions(*, role: str | None, extra: Iterable[str] | None) -> FrozenSet[str]:
    """
    Base role grants + member.permissions extras (additive).
    OWNER is handled as "all" in is_permitted().
    """
    base = ROLE_BASE_PERMISSIONS.get(normalize_role(role), frozenset())
    extras = _normalize_extras(extra)
    if not extras:
        return base
    return frozenset(set(base) | set(extras))


def _has_domain_wildcard(grants: FrozenSet[str], required: str) -> bool:
    if required in grants:
        return True
    idx = required.find(".")
    if idx <= 0:
        return False
    domain = required[:idx]
    return f"{domain}.*" in grants


def is_permitted(*, role: str | None, grants: FrozenSet[str], required: str) -> bool:
    if normalize_role(role) == ROLE_OWNER:
        return True
    return _has_domain_wildcard(grants, required)
