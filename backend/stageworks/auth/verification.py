"""
Delivery of sign-up verification codes.

The HTTP layer hands each issued code to a ``VerificationCodeSender``. The
default sender only logs the delivery; a mail-backed sender can be placed on
``app.state.verification_sender``.
"""

from typing import Protocol

from fastapi import Request

from stageworks.core import get_logger
from stageworks.security import mask_identity

logger = get_logger(__name__)


class VerificationCodeSender(Protocol):
    def send(self, email: str, code: str, username: str) -> bool:
        """Deliver ``code``. Returns False when delivery failed."""
        ...


class LoggingVerificationSender:
    """Records deliveries in the log without sending anything."""

    def send(self, email: str, code: str, username: str) -> bool:
        logger.info(
            "Verification code issued",
            data={"email": mask_identity(email), "username": username},
        )
        return True


def get_verification_sender(request: Request) -> VerificationCodeSender:
    """Resolve the sender from app state (create the logging sender if missing)."""
    sender = getattr(request.app.state, "verification_sender", None)
    if sender is None:
        sender = LoggingVerificationSender()
        request.app.state.verification_sender = sender
    return sender
