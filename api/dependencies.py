"""FastAPI dependencies for dependency injection."""

from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from api.schemas.analytics import AnalyticsFilters, build_analytics_filters
from database.models.users import User, UserRole


async def get_current_user(request: Request) -> Optional[User]:
    """
    Get the user attached to the request by the upstream authentication layer.
    Returns None if the request is not authenticated.
    """
    return getattr(request.state, "user", None)


async def require_authenticated_user(
    current_user: Optional[User] = Depends(get_current_user),
) -> User:
    """Require user to be authenticated."""
    if not current_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return current_user


async def require_active_user(
    current_user: User = Depends(require_authenticated_user),
) -> User:
    """Require user to be active."""
    if not current_user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user account",
        )
    return current_user


async def require_admin_user(
    current_user: User = Depends(require_active_user),
) -> User:
    """Require user to be a company admin."""
    if current_user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


def get_analytics_filters(
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    departmentId: Optional[str] = None,
    locationId: Optional[str] = None,
    jobId: Optional[int] = None,
    recruiterId: Optional[int] = None,
) -> AnalyticsFilters:
    """Build report filters from the query string."""
    return build_analytics_filters(
        startDate=startDate,
        endDate=endDate,
        departmentId=departmentId,
        locationId=locationId,
        jobId=jobId,
        recruiterId=recruiterId,
    )
