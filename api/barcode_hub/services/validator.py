# barcode_hub/services/validator.py
"""
Barcode Validator / Parser.

Checks codes typed, scanned or imported into the system against the
fixed-width grammar:

    STRUCTURED        PREFIX | TYPE (1 char, U/P) | COUNTER (6 ASCII digits)
    CHECKSUM_NUMERIC  13 ASCII digits, last one a mod-10 check digit

Nothing in here raises on malformed input. Validation accumulates every
defect so the caller can show all of them at once.
"""
from __future__ import annotations
import re
from typing import List

from barcode_hub.db_models import BarcodeFormat
from barcode_hub.models import ValidationResult, ParsedCodeInfo, ScannedFormat
from barcode_hub.services.encoder import (
    COUNTER_WIDTH, EAN13_LENGTH, LETTER_TYPES, check_digit,
)

# Error codes
INVALID_LENGTH = "invalid_length"
INVALID_PREFIX = "invalid_prefix"
INVALID_TYPE_LETTER = "invalid_type_letter"
INVALID_COUNTER_DIGITS = "invalid_counter_digits"
NON_DIGIT = "non_digit"
CHECKSUM_MISMATCH = "checksum_mismatch"

_ASCII_DIGITS = re.compile(r"[0-9]+")


def _is_ascii_digits(s: str) -> bool:
    # fullmatch: "$" would also accept a trailing newline
    return bool(_ASCII_DIGITS.fullmatch(s))


class BarcodeValidator:
    """Validator bound to the configured prefix and format."""

    def __init__(self, prefix: str, fmt: BarcodeFormat = BarcodeFormat.STRUCTURED):
        self.prefix = prefix
        self.format = fmt

    @property
    def structured_length(self) -> int:
        return len(self.prefix) + 1 + COUNTER_WIDTH

    # =========================================================================
    # Structured
    # =========================================================================

    def validate_structured(self, code: str) -> ValidationResult:
        code = code or ""
        n = len(self.prefix)
        errors: List[str] = []

        if len(code) != self.structured_length:
            errors.append(INVALID_LENGTH)
        if not code.startswith(self.prefix):
            errors.append(INVALID_PREFIX)
        letter = code[n:n + 1]
        if letter not in LETTER_TYPES:
            errors.append(INVALID_TYPE_LETTER)
        tail = code[-COUNTER_WIDTH:] if len(code) >= COUNTER_WIDTH else ""
        if not _is_ascii_digits(tail):
            errors.append(INVALID_COUNTER_DIGITS)

        return ValidationResult(
            is_valid=not errors,
            format=BarcodeFormat.STRUCTURED,
            errors=errors,
        )

    def parse_structured(self, code: str) -> ParsedCodeInfo:
        """
        Split a structured code into its fields.

        Returns is_valid=False and counter=0 for anything that does not
        validate; prefix and type are still filled in when they can be read.
        """
        code = code or ""
        n = len(self.prefix)
        info = ParsedCodeInfo(
            prefix=code[:n],
            type=LETTER_TYPES.get(code[n:n + 1]),
        )
        if not self.validate_structured(code).is_valid:
            return info
        info.counter = int(code[-COUNTER_WIDTH:])
        info.is_valid = True
        return info

    # =========================================================================
    # Checksum numeric
    # =========================================================================

    @staticmethod
    def checksum_errors(code: str) -> List[str]:
        code = code or ""
        errors: List[str] = []
        if len(code) != EAN13_LENGTH:
            errors.append(INVALID_LENGTH)
        if not _is_ascii_digits(code):
            errors.append(NON_DIGIT)
        if not errors and check_digit(code[:12]) != int(code[12]):
            errors.append(CHECKSUM_MISMATCH)
        return errors

    @classmethod
    def validate_checksum_numeric(cls, code: str) -> bool:
        return not cls.checksum_errors(code)

    # =========================================================================
    # Dispatch / scanner input
    # =========================================================================

    def validate(self, code: str) -> ValidationResult:
        """Validate against the configured format."""
        if self.format == BarcodeFormat.CHECKSUM_NUMERIC:
            errors = self.checksum_errors(code)
            return ValidationResult(
                is_valid=not errors,
                format=BarcodeFormat.CHECKSUM_NUMERIC,
                errors=errors,
            )
        return self.validate_structured(code)

    @staticmethod
    def is_valid_ean8_checksum(code: str) -> bool:
        """Validate EAN-8 checksum."""
        if len(code) != 8 or not _is_ascii_digits(code):
            return False
        total = sum(int(d) * (3 if i % 2 == 0 else 1) for i, d in enumerate(code[:7]))
        return int(code[7]) == (10 - (total % 10)) % 10

    @staticmethod
    def is_valid_upc_checksum(code: str) -> bool:
        """Validate UPC-A checksum."""
        if len(code) != 12 or not _is_ascii_digits(code):
            return False
        total = sum(int(d) * (3 if i % 2 == 0 else 1) for i, d in enumerate(code[:11]))
        return int(code[11]) == (10 - (total % 10)) % 10

    def classify(self, code: str) -> ScannedFormat:
        """
        Recognise what a scanner handed us.

        Scanners commonly append CR/LF or pad with spaces, so the input is
        stripped first.
        """
        code = (code or "").strip()
        if not code:
            return ScannedFormat.unknown
        if self.validate_structured(code).is_valid:
            return ScannedFormat.structured
        if self.validate_checksum_numeric(code):
            return ScannedFormat.ean13
        if self.is_valid_ean8_checksum(code):
            return ScannedFormat.ean8
        if self.is_valid_upc_checksum(code):
            return ScannedFormat.upc
        return ScannedFormat.unknown
