"""
Certificate number and verification token generation.
"""

import re
import secrets
from datetime import date
from typing import Optional, Tuple

from .exceptions import ValidationError

DOCUMENT_CODE = "SKP"
TOKEN_BYTES = 16


class CertificateNumberGenerator:
    """Formats sequential certificate numbers."""

    def __init__(self, office_code: str = "421.2"):
        self.office_code = office_code
        self.pattern = re.compile(
            rf"^(?P<office>[0-9A-Za-z.\-]+)/{DOCUMENT_CODE}/(?P<year>\d{{4}})/(?P<seq>\d{{4,}})$"
        )

    def generate(self, sequence: int, year: Optional[int] = None) -> str:
        """
        Builds a certificate number.

        Format: <office-code>/SKP/<year>/<sequence padded to 4 digits>

        Args:
            sequence: 1-based sequence inside the year (count of issued + 1)
            year: Calendar year, current year when omitted

        Returns:
            str: Certificate number, e.g. 421.2/SKP/2024/0001
        """
        if sequence < 1:
            raise ValidationError(f"Sequence must be positive: {sequence}")
        if year is None:
            year = date.today().year
        return f"{self.office_code}/{DOCUMENT_CODE}/{year}/{sequence:04d}"

    def parse(self, certificate_number: str) -> Tuple[str, int, int]:
        """
        Splits a certificate number into office code, year and sequence.

        Raises:
            ValidationError: If the number has a wrong format
        """
        match = self.pattern.match(certificate_number or "")
        if not match:
            raise ValidationError(f"Invalid certificate number: {certificate_number}")
        return match.group("office"), int(match.group("year")), int(match.group("seq"))

    def validate_format(self, certificate_number: str) -> bool:
        """Checks the certificate number format."""
        return bool(self.pattern.match(certificate_number or ""))


def generate_verification_token() -> str:
    """
    Generates a random verification token.

    Returns:
        str: 32 hex characters (128 bits of entropy)
    """
    return secrets.token_hex(TOKEN_BYTES)
