from __future__ import annotations

from typing import TYPE_CHECKING

from loan_review.schemas.review import UserRole
from loan_review.services.workflow_errors import RoleRequired

if TYPE_CHECKING:
    from loan_review.api.deps import Caller


def has_role(caller: Caller, *roles: UserRole | str) -> bool:
    allowed = {role.value if isinstance(role, UserRole) else role for role in roles}
    return caller.role in allowed


def ensure_role(caller: Caller, *roles: UserRole | str) -> None:
    if not has_role(caller, *roles):
        raise RoleRequired(
            required=sorted(role.value if isinstance(role, UserRole) else role for role in roles),
            role=caller.role,
        )


def ensure_admin(caller: Caller) -> None:
    ensure_role(caller, UserRole.ADMIN)


def ensure_self_or_admin(caller: Caller, reviewer_id) -> None:
    """Reviewers may act on their own record; administrators on any."""
    if has_role(caller, UserRole.ADMIN):
        return
    if has_role(caller, UserRole.DSA) and str(caller.user_id) == str(reviewer_id):
        return
    raise RoleRequired(required=[UserRole.ADMIN.value], role=caller.role)
