"""Role checks for the admin API.

Every billing operation is admin-only; client users (portal logins) may
authenticate but are refused here.
"""
from enum import Enum

from fastapi import HTTPException, status
import structlog

logger = structlog.get_logger(__name__)


class Role(str, Enum):
    """User roles."""

    ADMIN = "admin"
    CLIENT = "client"


def ensure_role(current_user: dict, *allowed_roles: Role) -> None:
    """
    Check that the authenticated user holds one of the allowed roles.

    Args:
        current_user: Decoded token claims
        allowed_roles: Roles that may perform the operation

    Raises:
        HTTPException: 403 if the user's role is not allowed
    """
    user_role = current_user.get("role")
    if user_role in {role.value for role in allowed_roles}:
        return

    logger.warning(
        "rbac_permission_denied",
        user_id=current_user.get("sub"),
        user_role=user_role,
        required_roles=[r.value for r in allowed_roles],
    )
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=f"Insufficient permissions. Required roles: {', '.join(r.value for r in allowed_roles)}",
    )
