# barcode_hub/services/encoder.py
"""
Barcode Encoder - turns reserved counter values into code strings.

Two formats:
- STRUCTURED:        <PREFIX><U|P><6-digit zero-padded counter>   e.g. GPMSU001001
- CHECKSUM_NUMERIC:  <3-digit namespace><3-digit manufacturer><6-digit payload><check digit>

Both encoders are pure functions of their inputs. Neither guarantees uniqueness
on its own; that is the registry's job.
"""
from __future__ import annotations
from typing import Dict, Optional

from barcode_hub.db_models import BarcodeType, BarcodeFormat

COUNTER_WIDTH = 6
COUNTER_MAX = 10 ** COUNTER_WIDTH - 1
EAN13_LENGTH = 13

TYPE_LETTERS: Dict[BarcodeType, str] = {
    BarcodeType.UNIT: "U",
    BarcodeType.PRODUCT: "P",
}
LETTER_TYPES: Dict[str, BarcodeType] = {v: k for k, v in TYPE_LETTERS.items()}

# Leading digit of the manufacturer segment when it is derived per barcode type
_TYPE_DIGITS: Dict[BarcodeType, int] = {
    BarcodeType.UNIT: 1,
    BarcodeType.PRODUCT: 2,
}


def check_digit(body: str) -> int:
    """
    Mod-10 check digit over a 12-digit body.

    Weight 1 on even (0-based) positions, 3 on odd positions.
    """
    if len(body) != EAN13_LENGTH - 1 or not body.isdigit():
        raise ValueError(f"checksum body must be 12 digits, got {body!r}")
    total = sum(int(d) * (1 if i % 2 == 0 else 3) for i, d in enumerate(body))
    return (10 - (total % 10)) % 10


def serial_to_digits(raw_serial: str) -> str:
    """Digits pass through, letters become their two-digit ordinal (A=01 .. Z=26)."""
    out = []
    for ch in (raw_serial or "").upper():
        if ch.isascii() and ch.isdigit():
            out.append(ch)
        elif "A" <= ch <= "Z":
            out.append(f"{ord(ch) - ord('A') + 1:02d}")
    return "".join(out)


def derive_manufacturer(prefix: str, barcode_type: Optional[BarcodeType] = None) -> str:
    """
    3-digit manufacturer segment derived from the store prefix.

    Without a type: sum of the prefix ordinals mod 1000.
    With a type: type digit followed by the sum mod 100, so unit and product
    bodies never coincide.
    """
    base = _ordinal_sum(prefix)
    if barcode_type is None:
        return f"{base % 1000:03d}"
    return f"{_TYPE_DIGITS[barcode_type]}{base % 100:02d}"


def _ordinal_sum(prefix: str) -> int:
    total = 0
    for ch in (prefix or "").upper():
        if "A" <= ch <= "Z":
            total += ord(ch) - ord("A") + 1
        elif ch.isascii() and ch.isdigit():
            total += int(ch)
    return total


class BarcodeEncoder:
    """Fixed-width encoders bound to one store prefix and EAN namespace."""

    def __init__(self, prefix: str, namespace: str = "200"):
        if not prefix:
            raise ValueError("Barcode prefix cannot be empty")
        if len(namespace) != 3 or not namespace.isdigit():
            raise ValueError(f"EAN namespace must be 3 digits, got {namespace!r}")
        self.prefix = prefix
        self.namespace = namespace

    @property
    def structured_length(self) -> int:
        return len(self.prefix) + 1 + COUNTER_WIDTH

    # =========================================================================
    # Structured
    # =========================================================================

    def encode_structured(self, counter: int, barcode_type: BarcodeType) -> str:
        if counter < 0 or counter > COUNTER_MAX:
            raise ValueError(f"counter {counter} does not fit in {COUNTER_WIDTH} digits")
        return f"{self.prefix}{TYPE_LETTERS[barcode_type]}{counter:0{COUNTER_WIDTH}d}"

    # =========================================================================
    # Checksum numeric (EAN-13 style)
    # =========================================================================

    def encode_checksum_numeric(self, raw_serial: str, manufacturer: Optional[str] = None) -> str:
        """
        Build a 13-digit numeric code from an arbitrary serial.

        The serial→payload mapping is lossy (letters expand to two digits, then
        the result is cut to 6), so distinct serials can share a body.
        """
        manufacturer = manufacturer if manufacturer is not None else derive_manufacturer(self.prefix)
        if len(manufacturer) != 3 or not manufacturer.isdigit():
            raise ValueError(f"manufacturer segment must be 3 digits, got {manufacturer!r}")
        payload = serial_to_digits(raw_serial)[:COUNTER_WIDTH].rjust(COUNTER_WIDTH, "0")
        body = f"{self.namespace}{manufacturer}{payload}"
        return f"{body}{check_digit(body)}"

    # =========================================================================
    # Dispatch
    # =========================================================================

    def encode(self, counter: int, barcode_type: BarcodeType, fmt: BarcodeFormat) -> str:
        """Encode a reserved counter value in the configured format."""
        if fmt == BarcodeFormat.CHECKSUM_NUMERIC:
            if counter < 0 or counter > COUNTER_MAX:
                raise ValueError(f"counter {counter} does not fit in {COUNTER_WIDTH} digits")
            return self.encode_checksum_numeric(
                f"{counter:0{COUNTER_WIDTH}d}",
                manufacturer=derive_manufacturer(self.prefix, barcode_type),
            )
        return self.encode_structured(counter, barcode_type)
