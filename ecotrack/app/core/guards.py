"""
Security guards for role-based and ownership-based access control.

Provides dependencies for protecting endpoints.
"""

from typing import List
from fastapi import Depends, HTTPException, status
from ecotrack.app.models.enums import UserRole
from ecotrack.app.core.dependencies import get_current_user


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/collectors/pickup/start")
        async def start_pickup(current_user: dict = Depends(require_role([UserRole.COLLECTOR]))):
            ...

    Raises:
        HTTPException 403 if user role is not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        user_role_str = current_user.get("role")

        if not user_role_str:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Role information missing from token"
            )

        try:
            user_role = UserRole(user_role_str)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid role in token"
            )

        if user_role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return current_user

    return role_checker


def require_admin(current_user: dict = Depends(get_current_user)) -> dict:
    """Dependency for admin-only endpoints."""
    if current_user.get("role") != UserRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )

    return current_user


def is_admin(current_user: dict) -> bool:
    return current_user.get("role") == UserRole.ADMIN.value


class CollectorAccessGuard:
    """
    Restricts collector-scoped resources (route, statistics, history)
    to admins and to the collector themself.

    Usage:
        collector_guard = CollectorAccessGuard()

        @router.get("/collectors/{collector_id}/route")
        async def get_route(collector_id: int, current_user: dict = Depends(get_current_user)):
            collector_guard.enforce(collector_id, current_user)
            ...
    """

    def enforce(self, collector_id: int, current_user: dict, resource_name: str = "resource"):
        """
        Raise 403 unless the caller is an admin or the collector in question.
        """
        if is_admin(current_user):
            return

        if current_user.get("user_id") != collector_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. You can only view your own {resource_name}."
            )
