from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, Header, HTTPException, status

from orderflow.database import get_db
from orderflow.models import RoleName

__all__ = ["CurrentUser", "get_current_user", "get_db", "require_roles"]


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: RoleName


def get_current_user(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> CurrentUser:
    """Caller identity as asserted by the upstream gateway."""

    user_id = str(x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    try:
        role = RoleName(str(x_user_role or "").strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or unknown X-User-Role header",
        )
    return CurrentUser(id=user_id, role=role)


def require_roles(*roles: RoleName) -> Callable:
    _CURRENT_USER_DEP = Depends(get_current_user)

    def dependency(user: CurrentUser = _CURRENT_USER_DEP) -> CurrentUser:
        # Admin has access to everything
        if user.role == RoleName.admin:
            return user
        if roles and user.role not in set(roles):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return user

    return dependency
