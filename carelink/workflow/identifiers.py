"""Business identifier minting.

Identifiers are distinct from storage primary keys and stay stable
across exports and URLs. Shape: ``<PREFIX>-<UTC timestamp to the
microsecond>-<8 hex chars>``, so identifiers of one kind sort by
creation time and two mints in the same microsecond still differ.
"""

import re
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from carelink.core.exceptions import ValidationError
from carelink.utils.time import utc_now


class IdentifierKind(str, Enum):
    """Entity kinds that carry a business identifier."""

    CONSULTATION = "consultation"
    CONSENT = "consent"
    REFERRAL = "referral"
    PRESCRIPTION = "prescription"
    INVOICE = "invoice"
    ORDER = "order"


PREFIXES = {
    IdentifierKind.CONSULTATION: "CONS",
    IdentifierKind.CONSENT: "CONSENT",
    IdentifierKind.REFERRAL: "REF",
    IdentifierKind.PRESCRIPTION: "RX",
    IdentifierKind.INVOICE: "INV",
    IdentifierKind.ORDER: "ORD",
}

# Video channel names are limited by the call provider
CHANNEL_NAME_MAX_LENGTH = 64
CHANNEL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class IdentifierMint:
    """Generates prefixed, sortable, collision-resistant identifiers."""

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock

    def new(self, kind: IdentifierKind | str) -> str:
        kind = IdentifierKind(kind)
        timestamp = self._clock().strftime("%Y%m%d%H%M%S%f")
        unique_id = uuid.uuid4().hex[:8].upper()
        return f"{PREFIXES[kind]}-{timestamp}-{unique_id}"


_default_mint = IdentifierMint()


def new_identifier(kind: IdentifierKind | str) -> str:
    """Mint an identifier with the process-wide mint."""
    return _default_mint.new(kind)


def channel_name_for(reference_number: str) -> str:
    """Derive the video channel name for a consultation."""
    name = f"consultation-{reference_number}"
    if not CHANNEL_NAME_PATTERN.match(name):
        raise ValidationError("Invalid channel name generated for consultation")
    return name


def freeze_once(instance: Any, key: str, value: Any) -> Any:
    """Attribute validator that allows setting ``key`` once.

    Used with ``@validates`` on business identifier columns.
    """
    current = instance.__dict__.get(key)
    if current is not None and current != value:
        raise ValidationError(f"{key} is immutable once assigned")
    return value
