"""FastAPI dependency injection utilities."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from carelink.core.config import settings
from carelink.core.security import decode_access_token
from carelink.db.session import get_db
from carelink.models.user import User
from carelink.services.gateway import PaymentVerifier, payment_verifier_from_settings
from carelink.services.identity import IdentityDirectory
from carelink.services.notifications import NotificationBus, notification_bus
from carelink.services.video import (
    CallCredentialConfig,
    CallCredentialIssuer,
    SignedCallCredentialIssuer,
)
from carelink.workflow.actors import Actor

# Security scheme
security = HTTPBearer(auto_error=False)


async def get_current_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> dict | None:
    """Extract and decode the current JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        Decoded token payload or None
    """
    if not credentials:
        return None

    return decode_access_token(credentials.credentials)


async def get_current_user(
    token: Annotated[dict | None, Depends(get_current_token)],
    session: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Get the current authenticated user.

    The role comes from the identity directory, never from the token.

    Raises:
        HTTPException: If not authenticated or the account is disabled
    """
    if not token or token.get("type") != "access" or not token.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await IdentityDirectory(session).get_user(token["sub"])

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is disabled",
        )

    return user


async def get_current_actor(
    user: Annotated[User, Depends(get_current_user)],
) -> Actor:
    return Actor.from_user(user)


def get_notification_bus() -> NotificationBus:
    return notification_bus


def get_call_issuer() -> CallCredentialIssuer:
    return SignedCallCredentialIssuer(CallCredentialConfig.from_settings(settings))


def get_payment_verifier() -> PaymentVerifier:
    return payment_verifier_from_settings(settings)


# Type aliases for cleaner dependency injection
CurrentUser = Annotated[User, Depends(get_current_user)]
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
Notifications = Annotated[NotificationBus, Depends(get_notification_bus)]
CallIssuer = Annotated[CallCredentialIssuer, Depends(get_call_issuer)]
Verifier = Annotated[PaymentVerifier, Depends(get_payment_verifier)]
