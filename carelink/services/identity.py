"""Read access to the identity directory and booking store."""

from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carelink.core.exceptions import NotFoundError, ValidationError
from carelink.models.booking import Booking
from carelink.models.user import User


class IdentityDirectory:
    """Looks up platform users."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_user(self, user_id: Optional[str]) -> Optional[User]:
        if not user_id:
            return None
        result = await self.session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def require_user(
        self,
        user_id: Optional[str],
        role: Optional[str] = None,
        label: str = "User",
    ) -> User:
        """Fetch an active user, optionally of a given role.

        Raises:
            NotFoundError: If the user does not exist or is inactive
            ValidationError: If the user holds a different role
        """
        user = await self.get_user(user_id)
        if user is None or not user.is_active:
            raise NotFoundError(f"{label} not found")

        expected = getattr(role, "value", role)
        if expected and user.role != expected:
            raise ValidationError(f"{label} must be a {expected.lower()} account")
        return user

    async def get_email(self, user_id: Optional[str]) -> Optional[str]:
        user = await self.get_user(user_id)
        return user.email if user else None


class BookingStore:
    """Read-only booking queries."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_booking(self, booking_id: Optional[str]) -> Optional[Booking]:
        if not booking_id:
            return None
        result = await self.session.execute(select(Booking).where(Booking.id == booking_id))
        return result.scalar_one_or_none()

    async def find_qualifying_booking(
        self,
        patient_id: str,
        provider_id: str,
        statuses: Iterable[str],
    ) -> Optional[Booking]:
        """Most recent booking linking provider and patient in one of ``statuses``."""
        result = await self.session.execute(
            select(Booking)
            .where(
                Booking.patient_id == patient_id,
                Booking.provider_id == provider_id,
                Booking.status.in_(list(statuses)),
            )
            .order_by(Booking.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()
