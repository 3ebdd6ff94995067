"""Payment gateway confirmation checks.

The gateway (or the edge service that receives its callback) hands the
core a payment id and, when signing is enabled, a compact HS256 token
binding that payment id to our order id.
"""

from abc import ABC, abstractmethod
from typing import Optional

from jose import JWTError, jwt

from carelink.core.config import Settings
from carelink.core.exceptions import AuthorizationError, ValidationError


class PaymentVerifier(ABC):
    """Decides whether a gateway confirmation can be trusted."""

    @abstractmethod
    def verify(self, order_id: str, gateway_payment_id: str, signature: Optional[str]) -> None:
        """Raise AuthorizationError when the confirmation is not genuine."""
        pass


def _require_payment_id(gateway_payment_id: str) -> None:
    if not gateway_payment_id or not gateway_payment_id.strip():
        raise ValidationError("A gateway payment id is required")


class TrustedPaymentVerifier(PaymentVerifier):
    """Accepts confirmations already verified upstream of this service."""

    def verify(self, order_id: str, gateway_payment_id: str, signature: Optional[str]) -> None:
        _require_payment_id(gateway_payment_id)


class SignedPaymentVerifier(PaymentVerifier):
    """Checks a token signed with the shared gateway secret.

    The token must carry ``order_id`` and ``payment_id`` claims equal to
    the confirmation being recorded.
    """

    algorithm = "HS256"

    def __init__(self, secret: str) -> None:
        self.secret = secret

    def verify(self, order_id: str, gateway_payment_id: str, signature: Optional[str]) -> None:
        _require_payment_id(gateway_payment_id)
        if not signature:
            raise AuthorizationError("Payment signature is required")
        try:
            claims = jwt.decode(signature, self.secret, algorithms=[self.algorithm])
        except JWTError:
            raise AuthorizationError("Payment signature verification failed") from None

        if claims.get("order_id") != order_id or claims.get("payment_id") != gateway_payment_id:
            raise AuthorizationError("Payment signature does not match this order")


def payment_verifier_from_settings(config: Settings) -> PaymentVerifier:
    if config.payment_signing_secret:
        return SignedPaymentVerifier(config.payment_signing_secret)
    return TrustedPaymentVerifier()
