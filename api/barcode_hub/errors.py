# barcode_hub/errors.py
"""
Error taxonomy for barcode generation and registry operations.

Only ``StorageUnavailable`` and ``GenerationExhaustedError`` ever reach callers
of the generator; ``ConflictError`` is consumed by its retry loop. Validation
never raises - it returns structured results (see services.validator).
"""
from __future__ import annotations
import enum
from typing import Optional


GENERIC_GENERATION_MESSAGE = "could not generate a unique code, try again"


class BarcodeError(Exception):
    """Base class for all barcode_hub errors."""


class StorageUnavailable(BarcodeError):
    """Counter store or registry could not be reached (non-retryable)."""

    def __init__(self, operation: str, detail: Optional[str] = None):
        self.operation = operation
        self.detail = detail
        msg = f"storage unavailable during {operation}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class ConflictReason(str, enum.Enum):
    code = "code"            # the code is already registered
    owner = "owner"          # the owner already holds an active code of this type
    counter = "counter"      # counter CAS lost too many rounds


class ConflictError(BarcodeError):
    """A uniqueness guard rejected the write; retryable."""

    def __init__(self, reason: ConflictReason, code: Optional[str] = None):
        self.reason = reason
        self.code = code
        super().__init__(f"{reason.value} conflict" + (f" for {code}" if code else ""))


class GenerationExhaustedError(BarcodeError):
    """Every attempt ended in a conflict."""

    def __init__(self, attempts: int, barcode_type: Optional[str] = None, entity_id: Optional[str] = None):
        self.attempts = attempts
        self.barcode_type = barcode_type
        self.entity_id = entity_id
        super().__init__(f"{GENERIC_GENERATION_MESSAGE} (attempts={attempts})")
