"""Authentication and authorization utilities for staff endpoints."""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from esign.utils.errors import ForbiddenError, UnauthorizedError


class UserRole(str, Enum):
    """Roles carried in the X-User-Role header."""

    ADMIN = "admin"
    STAFF = "staff"
    CLIENT = "client"


# Roles allowed to prepare, send and cancel signature requests
STAFF_ROLES = frozenset({UserRole.ADMIN, UserRole.STAFF})


@dataclass
class CurrentUser:
    """Represents the currently authenticated staff or client user."""

    id: str
    roles: List[UserRole] = field(default_factory=lambda: [UserRole.CLIENT])
    name: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def is_staff(self) -> bool:
        return any(role in STAFF_ROLES for role in self.roles)


def require_staff(user: Optional[CurrentUser]) -> CurrentUser:
    """
    Ensure the caller may manage signature requests.

    Raises:
        UnauthorizedError: no user on the request
        ForbiddenError: the user holds neither the admin nor the staff role
    """
    if user is None:
        raise UnauthorizedError("Authentication required")

    if not user.is_staff:
        raise ForbiddenError(
            message="Insufficient permissions",
            details={"required_roles": sorted(r.value for r in STAFF_ROLES)},
        )
    return user


def user_from_headers(
    user_id: Optional[str] = None,
    roles: Optional[List[UserRole]] = None,
    name: Optional[str] = None,
) -> CurrentUser:
    """
    Build the caller from gateway-supplied identity headers.

    Identity is asserted upstream; this service only checks roles.
    """
    return CurrentUser(
        id=user_id or str(uuid.uuid4()),
        roles=roles or [UserRole.STAFF],
        name=name,
    )
