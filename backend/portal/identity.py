"""Current-user identity as handed over by the external identity provider."""

from dataclasses import dataclass
from uuid import UUID

from portal.exceptions import AuthError, PermissionDenied


@dataclass(frozen=True)
class CurrentUser:
    id: UUID
    email: str
    name: str = ""
    role: str = "student"  # student, admin

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def require_user(user: CurrentUser | None) -> CurrentUser:
    if user is None:
        raise AuthError("Login required")
    return user


def require_admin(user: CurrentUser | None) -> CurrentUser:
    user = require_user(user)
    if not user.is_admin:
        raise PermissionDenied("Admin access required")
    return user
