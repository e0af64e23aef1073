"""
Phone Number Normalization

Validates contact numbers captured during qualification and derives their
E.164 form. Local formats ("0917-555-1234") are parsed against the
configured default region (PH unless overridden).
"""

import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberFormat
from dataclasses import dataclass
from typing import Optional
from leadify.config import get_settings
from leadify.utils.observability import logger


@dataclass
class NormalizedPhone:
    """Result of phone normalization."""
    original: str
    e164: str
    country_code: str
    national_number: str
    is_mobile: bool
    region: str


class PhoneNormalizationError(Exception):
    """Raised when phone number cannot be normalized."""
    pass


class PhoneNormalizer:
    """
    Usage:
        normalizer = PhoneNormalizer()
        normalizer.normalize("0917 123 4567").e164  # "+639171234567"
    """

    def __init__(self, default_region: Optional[str] = None):
        self.default_region = default_region or get_settings().default_phone_region

    def normalize(self, phone: str, default_region: Optional[str] = None) -> NormalizedPhone:
        """
        Raises:
            PhoneNormalizationError: If number cannot be parsed or is invalid
        """
        region = default_region or self.default_region
        cleaned = self._clean_input(phone)

        try:
            parsed = phonenumbers.parse(cleaned, region)
        except NumberParseException as e:
            raise PhoneNormalizationError(f"Cannot parse phone number '{phone}': {e}") from e

        if not phonenumbers.is_valid_number(parsed):
            raise PhoneNormalizationError(f"Invalid phone number: {phone}")

        number_type = phonenumbers.number_type(parsed)
        result = NormalizedPhone(
            original=phone,
            e164=phonenumbers.format_number(parsed, PhoneNumberFormat.E164),
            country_code=str(parsed.country_code),
            national_number=str(parsed.national_number),
            is_mobile=number_type in (
                phonenumbers.PhoneNumberType.MOBILE,
                phonenumbers.PhoneNumberType.FIXED_LINE_OR_MOBILE,
            ),
            region=phonenumbers.region_code_for_number(parsed) or region,
        )

        logger.debug(f"Normalized phone: {phone} -> {result.e164}")
        return result

    @staticmethod
    def _clean_input(phone: str) -> str:
        phone = phone.strip()
        if phone.startswith("+"):
            return "+" + "".join(c for c in phone[1:] if c.isdigit())
        return "".join(c for c in phone if c.isdigit())

    def is_valid(self, phone: str, default_region: Optional[str] = None) -> bool:
        try:
            self.normalize(phone, default_region)
            return True
        except PhoneNormalizationError:
            return False
