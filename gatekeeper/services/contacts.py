from dataclasses import dataclass
from enum import Enum
import re

from gatekeeper.config import settings
from gatekeeper.errors import InvalidContact

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class ContactType(str, Enum):
    EMAIL = "email"
    PHONE = "phone"


def _normalize_email(email: str) -> str:
    cleaned = email.strip().lower()
    if not EMAIL_PATTERN.match(cleaned):
        raise InvalidContact("Please enter a valid email address")
    return cleaned


def _normalize_phone(phone_number: str, default_country_code: str) -> str:
    digits = re.sub(r"\D", "", phone_number)
    if not digits:
        raise InvalidContact("Phone number is missing")
    if len(digits) == 10 and not phone_number.strip().startswith("+"):
        country_digits = re.sub(r"\D", "", default_country_code)
        if not country_digits:
            raise InvalidContact("Default country code is not configured")
        digits = f"{country_digits}{digits}"
    if len(digits) < 10 or len(digits) > 15:
        raise InvalidContact("Please enter a valid phone number")
    return f"+{digits}"


@dataclass(frozen=True)
class ContactIdentity:
    value: str
    type: ContactType

    @classmethod
    def parse(
        cls,
        value: str,
        contact_type: "ContactType | str",
        default_country_code: str | None = None,
    ) -> "ContactIdentity":
        try:
            kind = ContactType(contact_type)
        except ValueError as exc:
            raise InvalidContact("Contact type must be either email or phone") from exc
        if kind is ContactType.EMAIL:
            return cls(_normalize_email(value), kind)
        country_code = default_country_code or settings.default_country_code
        return cls(_normalize_phone(value, country_code), kind)

    def masked(self) -> str:
        if self.type is ContactType.EMAIL:
            local, _, domain = self.value.partition("@")
            return f"{local[:2]}***@{domain}"
        return f"{self.value[:3]}***{self.value[-2:]}"
