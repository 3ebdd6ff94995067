"""Video call credentials."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional

from jose import jwt

from carelink.core.config import Settings
from carelink.core.exceptions import ConfigurationError, ValidationError
from carelink.utils.time import utc_now
from carelink.workflow.identifiers import CHANNEL_NAME_PATTERN

VIDEO_NOT_CONFIGURED = "Video call feature is not configured. Contact administrator."


class CallRole(str, Enum):
    PUBLISHER = "publisher"
    SUBSCRIBER = "subscriber"


@dataclass(frozen=True)
class CallCredentialConfig:
    app_id: str = ""
    app_certificate: str = ""
    token_ttl_seconds: int = 3600

    @property
    def is_configured(self) -> bool:
        return bool(self.app_id and self.app_certificate)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CallCredentialConfig":
        return cls(
            app_id=settings.video_app_id,
            app_certificate=settings.video_app_certificate,
            token_ttl_seconds=settings.video_token_ttl_seconds,
        )


@dataclass(frozen=True)
class CallCredentials:
    token: str
    channel_name: str
    uid: str
    app_id: str
    role: str
    expires_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "channel_name": self.channel_name,
            "uid": self.uid,
            "app_id": self.app_id,
            "role": self.role,
            "expires_at": self.expires_at.isoformat(),
        }


class CallCredentialIssuer(ABC):
    """Issues join tokens for a video channel."""

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        pass

    @abstractmethod
    def issue_token(
        self,
        channel_name: str,
        uid: str,
        role: CallRole = CallRole.PUBLISHER,
        ttl_seconds: Optional[int] = None,
    ) -> CallCredentials:
        """Issue credentials.

        Raises ConfigurationError when the issuer is not configured.
        """
        pass


class SignedCallCredentialIssuer(CallCredentialIssuer):
    """Signs channel join claims with the app certificate."""

    algorithm = "HS256"

    def __init__(
        self,
        config: CallCredentialConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config
        self._clock = clock

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    def issue_token(
        self,
        channel_name: str,
        uid: str,
        role: CallRole = CallRole.PUBLISHER,
        ttl_seconds: Optional[int] = None,
    ) -> CallCredentials:
        if not self.is_configured:
            raise ConfigurationError(VIDEO_NOT_CONFIGURED)
        if not channel_name or not CHANNEL_NAME_PATTERN.match(channel_name):
            raise ValidationError("Invalid channel name")

        role = CallRole(role)
        issued_at = self._clock()
        expires_at = issued_at + timedelta(seconds=ttl_seconds or self.config.token_ttl_seconds)
        token = jwt.encode(
            {
                "iss": self.config.app_id,
                "channel": channel_name,
                "uid": uid,
                "role": role.value,
                "iat": issued_at,
                "exp": expires_at,
            },
            self.config.app_certificate,
            algorithm=self.algorithm,
        )
        return CallCredentials(
            token=token,
            channel_name=channel_name,
            uid=uid,
            app_id=self.config.app_id,
            role=role.value,
            expires_at=expires_at,
        )
