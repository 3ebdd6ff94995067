"""Identity directory models."""

from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, String
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import Mapped, mapped_column

from carelink.db.base import Base, TimestampMixin

if TYPE_CHECKING:
    from carelink.workflow.snapshots import RoleProfile


class UserRole(str, Enum):
    """Platform roles."""

    PATIENT = "PATIENT"
    HOSPITAL = "HOSPITAL"
    DOCTOR = "DOCTOR"
    LAB = "LAB"
    PHARMACY = "PHARMACY"
    ADMIN = "ADMIN"


# Roles that act as care providers towards a patient
PROVIDER_ROLES = frozenset(
    {UserRole.HOSPITAL.value, UserRole.DOCTOR.value, UserRole.LAB.value, UserRole.PHARMACY.value}
)


class User(Base, TimestampMixin):
    """A platform account.

    Role-specific attributes (a doctor's specialization, a facility's
    address) live in ``profile`` and are read through ``role_profile``,
    which selects the payload type from ``role``.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    unique_id: Mapped[Optional[str]] = mapped_column(String(40), unique=True, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    profile: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    @property
    def role_profile(self) -> "RoleProfile":
        from carelink.workflow.snapshots import parse_profile

        return parse_profile(self.role, self.profile)

    @property
    def is_provider(self) -> bool:
        return self.role in PROVIDER_ROLES

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"
