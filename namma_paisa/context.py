"""
Request context passed explicitly into every manager operation.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable

from .errors import PermissionDeniedError


class Role(Enum):
    """User roles, higher privilege last"""
    CUSTOMER = "CUSTOMER"
    SUPER_ADMIN = "SUPER_ADMIN"

    @classmethod
    def parse_many(cls, names: Iterable[str]) -> FrozenSet['Role']:
        roles = set()
        for name in names:
            try:
                roles.add(cls(str(name).upper()))
            except ValueError:
                # Unknown roles grant nothing
                continue
        return frozenset(roles)


@dataclass(frozen=True)
class RequestContext:
    """Who is calling: the authenticated user and their roles"""
    user_id: str
    roles: FrozenSet[Role] = field(default_factory=lambda: frozenset({Role.CUSTOMER}))

    @property
    def is_super_admin(self) -> bool:
        return Role.SUPER_ADMIN in self.roles

    def can_access(self, owner_id: str) -> bool:
        """Owners see their own data, super admins see everyone's"""
        return self.is_super_admin or owner_id == self.user_id

    def require_role(self, role: Role) -> None:
        if role not in self.roles:
            raise PermissionDeniedError("Forbidden: Insufficient permissions")
