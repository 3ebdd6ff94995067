"""Referral compatibility rules.

Which referral types each source role may create, and which role the
target must hold for each type.
"""

from dataclasses import dataclass
from typing import Any, Optional

from carelink.core.exceptions import ValidationError

# source role -> {referral type -> required target role}
REFERRAL_MATRIX: dict[str, dict[str, str]] = {
    "HOSPITAL": {"INTER_DEPARTMENTAL": "DOCTOR"},
    "DOCTOR": {"DOCTOR_TO_DOCTOR": "DOCTOR", "DOCTOR_TO_PHARMACY": "PHARMACY"},
    "LAB": {"LAB_TO_LAB": "LAB"},
}

SOURCE_MESSAGES = {
    "HOSPITAL": "Hospitals can only create INTER_DEPARTMENTAL referrals",
    "DOCTOR": "Doctors can only create DOCTOR_TO_DOCTOR or DOCTOR_TO_PHARMACY referrals",
    "LAB": "Labs can only create LAB_TO_LAB referrals",
}

TARGET_LABELS = {
    "DOCTOR": "doctors",
    "PHARMACY": "pharmacies",
    "LAB": "labs",
}


@dataclass(frozen=True)
class CompatibilityDecision:
    """Outcome of a compatibility check."""

    allowed: bool
    reason: Optional[str] = None


def _value(role: Any) -> Optional[str]:
    return getattr(role, "value", role)


def check_referral_compatibility(
    source_role: Any,
    referral_type: Any,
    target_role: Any,
) -> CompatibilityDecision:
    """Check a (source role, referral type, target role) triple.

    Examples:
        >>> check_referral_compatibility("DOCTOR", "DOCTOR_TO_PHARMACY", "PHARMACY").allowed
        True
        >>> check_referral_compatibility("DOCTOR", "DOCTOR_TO_PHARMACY", "DOCTOR").allowed
        False
    """
    source_role = _value(source_role)
    referral_type = _value(referral_type)
    target_role = _value(target_role)

    allowed_types = REFERRAL_MATRIX.get(source_role)
    if allowed_types is None:
        return CompatibilityDecision(False, f"Role {source_role} cannot create referrals")

    required_target = allowed_types.get(referral_type)
    if required_target is None:
        return CompatibilityDecision(False, SOURCE_MESSAGES[source_role])

    if target_role != required_target:
        return CompatibilityDecision(
            False,
            f"{referral_type} referrals must target {TARGET_LABELS[required_target]}",
        )

    return CompatibilityDecision(True)


def ensure_referral_compatible(source_role: Any, referral_type: Any, target_role: Any) -> None:
    """Raise ValidationError when the triple is not allowed."""
    decision = check_referral_compatibility(source_role, referral_type, target_role)
    if not decision.allowed:
        raise ValidationError(decision.reason)
