"""Tests for video call credential issuing."""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from carelink.core.exceptions import ConfigurationError, ValidationError
from carelink.services.video import (
    VIDEO_NOT_CONFIGURED,
    CallCredentialConfig,
    CallRole,
    SignedCallCredentialIssuer,
)

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def issuer() -> SignedCallCredentialIssuer:
    config = CallCredentialConfig(app_id="app-1", app_certificate="cert-1", token_ttl_seconds=600)
    return SignedCallCredentialIssuer(config, clock=lambda: NOW)


def test_token_carries_channel_claims(issuer: SignedCallCredentialIssuer) -> None:
    credentials = issuer.issue_token("consultation-CONS-1", "user-1", CallRole.SUBSCRIBER)

    claims = jwt.decode(
        credentials.token, "cert-1", algorithms=["HS256"], options={"verify_exp": False}
    )
    assert claims["channel"] == "consultation-CONS-1"
    assert claims["uid"] == "user-1"
    assert claims["role"] == "subscriber"
    assert claims["iss"] == "app-1"
    assert credentials.expires_at == NOW + timedelta(seconds=600)
    assert credentials.app_id == "app-1"


def test_ttl_override(issuer: SignedCallCredentialIssuer) -> None:
    credentials = issuer.issue_token("consultation-CONS-1", "user-1", ttl_seconds=60)
    assert credentials.expires_at == NOW + timedelta(seconds=60)


def test_unconfigured_issuer_raises() -> None:
    issuer = SignedCallCredentialIssuer(CallCredentialConfig(app_id="app-1"))

    assert not issuer.is_configured
    with pytest.raises(ConfigurationError) as exc_info:
        issuer.issue_token("consultation-CONS-1", "user-1")
    assert exc_info.value.message == VIDEO_NOT_CONFIGURED


def test_invalid_channel_name(issuer: SignedCallCredentialIssuer) -> None:
    with pytest.raises(ValidationError):
        issuer.issue_token("bad channel!", "user-1")


def test_credentials_to_dict(issuer: SignedCallCredentialIssuer) -> None:
    data = issuer.issue_token("consultation-CONS-1", "user-1").to_dict()

    assert data["role"] == "publisher"
    assert data["expires_at"] == (NOW + timedelta(seconds=600)).isoformat()
