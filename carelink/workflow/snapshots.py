"""Identity snapshots and role profiles.

A user's role-specific attributes are a tagged variant: ``User.role``
selects exactly one profile type and the JSON payload is parsed into
it. Snapshots are immutable copies of display attributes taken when a
workflow entity is created and stored alongside it.
"""

from dataclasses import asdict, dataclass, fields
from typing import TYPE_CHECKING, Any, Optional, Union

from carelink.core.exceptions import ValidationError

if TYPE_CHECKING:
    from carelink.models.user import User


@dataclass(frozen=True)
class DoctorProfile:
    specialization: Optional[str] = None
    location: Optional[str] = None
    hospital_id: Optional[str] = None


@dataclass(frozen=True)
class FacilityProfile:
    """Hospitals, labs and pharmacies."""

    location: Optional[str] = None
    department: Optional[str] = None


@dataclass(frozen=True)
class PatientProfile:
    date_of_birth: Optional[str] = None
    gender: Optional[str] = None


@dataclass(frozen=True)
class AdminProfile:
    pass


RoleProfile = Union[DoctorProfile, FacilityProfile, PatientProfile, AdminProfile]

PROFILE_TYPES: dict[str, type] = {
    "DOCTOR": DoctorProfile,
    "HOSPITAL": FacilityProfile,
    "LAB": FacilityProfile,
    "PHARMACY": FacilityProfile,
    "PATIENT": PatientProfile,
    "ADMIN": AdminProfile,
}


def parse_profile(role: str, data: Optional[dict[str, Any]]) -> RoleProfile:
    """Build the profile variant for ``role`` from its stored payload.

    Unknown keys in the payload are ignored.
    """
    profile_type = PROFILE_TYPES.get(getattr(role, "value", role))
    if profile_type is None:
        raise ValidationError(f"Unknown role: {role}")
    known = {f.name for f in fields(profile_type)}
    return profile_type(**{k: v for k, v in (data or {}).items() if k in known})


@dataclass(frozen=True)
class ProviderSnapshot:
    name: str
    role: str
    specialization: Optional[str] = None
    location: Optional[str] = None
    unique_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProviderSnapshot":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class PatientSnapshot:
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PatientSnapshot":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def snapshot_provider(user: "User") -> ProviderSnapshot:
    """Capture a provider's public attributes."""
    profile = user.role_profile
    specialization = None
    location = None
    if isinstance(profile, DoctorProfile):
        specialization = profile.specialization
        location = profile.location
    elif isinstance(profile, FacilityProfile):
        location = profile.location

    return ProviderSnapshot(
        name=user.name,
        role=getattr(user.role, "value", user.role),
        specialization=specialization,
        location=location,
        unique_id=user.unique_id,
    )


def snapshot_patient(user: "User") -> PatientSnapshot:
    """Capture a patient's contact attributes."""
    return PatientSnapshot(name=user.name, phone=user.phone, email=user.email)
