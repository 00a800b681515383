from abc import ABC, abstractmethod
from datetime import datetime
import logging

from gatekeeper.services.contacts import ContactIdentity

LOGGER = logging.getLogger(__name__)


class OtpSender(ABC):
    """Out-of-band delivery of a one-time code (email or SMS transport)."""

    @abstractmethod
    def send(self, contact: ContactIdentity, code: str, expires_at: datetime) -> None:
        """Deliver ``code``; raise ``DeliveryError`` on failure."""


class LoggingOtpSender(OtpSender):
    """Development sender: writes the code to the log instead of delivering it."""

    def send(self, contact: ContactIdentity, code: str, expires_at: datetime) -> None:
        LOGGER.warning(
            "OTP %s for %s %s expires at %s",
            code,
            contact.type.value,
            contact.masked(),
            expires_at.isoformat(),
        )


otp_sender: OtpSender = LoggingOtpSender()
