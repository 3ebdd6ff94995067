"""The identity on whose behalf a workflow operation runs."""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from carelink.models.user import User

SYSTEM_ROLE = "SYSTEM"


@dataclass(frozen=True)
class Actor:
    """Requester identity as resolved from the identity directory."""

    id: Optional[str]
    role: str
    email: Optional[str] = None

    @classmethod
    def from_user(cls, user: "User") -> "Actor":
        return cls(id=user.id, role=getattr(user.role, "value", user.role), email=user.email)

    @property
    def is_system(self) -> bool:
        return self.role == SYSTEM_ROLE

    def has_role(self, *roles: str) -> bool:
        return self.role in {getattr(r, "value", r) for r in roles}


SYSTEM_ACTOR = Actor(id=None, role=SYSTEM_ROLE)
