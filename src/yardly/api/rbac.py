"""Role-based access for yard staff.

Role hierarchy: driver < operator < admin
"""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, HTTPException

from yardly.api.auth import CurrentUser, get_current_user

# Lower index = less privilege
ROLE_HIERARCHY = ["driver", "operator", "admin"]


def _role_level(role: str | None) -> int:
    try:
        return ROLE_HIERARCHY.index(role or "")
    except ValueError:
        return -1


def require_role(min_role: str) -> Callable[..., CurrentUser]:
    """Create a dependency that requires a minimum role.

    Usage:
        @router.post("/something")
        def endpoint(user: CurrentUser = Depends(require_role("operator"))):
            ...
    """
    min_level = _role_level(min_role)
    if min_level < 0:
        raise ValueError(f"Invalid role: {min_role}")

    def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if _role_level(user.role) < min_level:
            raise HTTPException(status_code=403, detail="Insufficient role")
        return user

    return dependency
