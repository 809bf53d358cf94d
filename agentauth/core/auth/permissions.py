"""Permission checks for authenticated principals and sessions."""

from __future__ import annotations

from typing import Optional, Union

from agentauth.core.auth.errors import PermissionDeniedError
from agentauth.core.auth.models import Session, UserInfo
from agentauth.security import constants as c


Principal = Union[UserInfo, Session, None]


def _permissions_of(principal: Principal) -> frozenset[str]:
    if principal is None:
        return frozenset()
    return principal.permissions


def has_permission(principal: Principal, permission: str) -> bool:
    """
    Check a single permission.

    ``admin`` grants everything; a missing principal has nothing.
    """
    perms = _permissions_of(principal)
    return c.ADMIN_PERMISSION in perms or permission in perms


def has_all_permissions(principal: Principal, *permissions: str) -> bool:
    return all(has_permission(principal, p) for p in permissions)


def require_permission(principal: Principal, permission: str) -> None:
    """
    Raises:
        PermissionDeniedError: If ``principal`` lacks ``permission``
    """
    if not has_permission(principal, permission):
        raise PermissionDeniedError(
            f"Missing required permission: {permission}",
            details={"permission": permission},
        )


def is_admin(principal: Optional[UserInfo]) -> bool:
    return principal is not None and (
        c.ADMIN_PERMISSION in principal.permissions or c.ADMIN_PERMISSION in principal.roles
    )
