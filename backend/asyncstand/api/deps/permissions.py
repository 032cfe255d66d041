from __future__ import annotations

from typing import Callable, Sequence

from fastapi import Depends, status

from asyncstand.api.deps.org import get_current_org_member
from asyncstand.core.errors import FORBIDDEN, api_error
from asyncstand.core.permissions import ROLE_OWNER, effective_permissions, is_permitted, normalize_role
from asyncstand.models.org_member import OrgMember


def require_permissions(
    required: str | Sequence[str],
    *,
    any_of: bool = False,
) -> Callable:
    """
    Enforce role permissions for the current org member. The owner always
    passes; other roles get their base grants plus member.permissions extras.

    any_of: True => any required perm passes; False => all are required
    """
    required_list = [required] if isinstance(required, str) else list(required)

    async def _checker(member: OrgMember = Depends(get_current_org_member)) -> OrgMember:
        role = normalize_role(member.role)
        if role == ROLE_OWNER:
            return member

        grants = effective_permissions(role=role, extra=member.permissions)
        checks = [is_permitted(role=role, grants=grants, required=p) for p in required_list]
        allowed = any(checks) if any_of else all(checks)

        if not allowed:
            missing = [p for p, ok in zip(required_list, checks) if not ok]
            raise api_error(
                status.HTTP_403_FORBIDDEN,
                FORBIDDEN,
                "You do not have permission to perform this action.",
                required=required_list,
                missing=missing,
                role=role,
            )
        return member

    return _checker
