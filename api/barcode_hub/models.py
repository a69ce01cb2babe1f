from __future__ import annotations
import enum
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field

from barcode_hub.db_models import BarcodeType, BarcodeFormat
from barcode_hub.settings import PREFIX_MAX_LENGTH, PREFIX_PATTERN


class ScannedFormat(str, enum.Enum):
    structured = "structured"
    ean13 = "ean13"
    ean8 = "ean8"
    upc = "upc"
    unknown = "unknown"


class BarcodeConfig(BaseModel):
    prefix: str = Field(default="GPMS", min_length=1)
    format: BarcodeFormat = BarcodeFormat.STRUCTURED
    counters: Dict[str, int] = Field(
        default_factory=lambda: {BarcodeType.UNIT.value: 1000, BarcodeType.PRODUCT.value: 1000}
    )

    def counter(self, barcode_type: BarcodeType) -> int:
        return int(self.counters.get(barcode_type.value, 0))


class ValidationResult(BaseModel):
    is_valid: bool
    format: BarcodeFormat
    errors: List[str] = Field(default_factory=list)


class ParsedCodeInfo(BaseModel):
    prefix: str = ""
    type: Optional[BarcodeType] = None
    counter: int = 0
    is_valid: bool = False


class BulkResult(BaseModel):
    code: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.code is not None


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------

class GenerateIn(BaseModel):
    metadata: Dict[str, Any] = Field(default_factory=dict)


class GenerateOut(BaseModel):
    code: str
    barcode_type: BarcodeType
    owner_entity_type: str
    owner_entity_id: str


class BulkGenerateIn(BaseModel):
    entity_ids: List[str] = Field(min_length=1)
    barcode_type: BarcodeType = BarcodeType.UNIT


class BulkGenerateOut(BaseModel):
    results: Dict[str, BulkResult]
    succeeded: int
    failed: int


class ValidateOut(BaseModel):
    code: str
    scanned_format: ScannedFormat
    validation: ValidationResult
    registered: bool = False


class ConfigUpdateIn(BaseModel):
    prefix: Optional[str] = Field(
        default=None, min_length=1, max_length=PREFIX_MAX_LENGTH, pattern=PREFIX_PATTERN,
    )
    format: Optional[BarcodeFormat] = None
    counters: Optional[Dict[str, int]] = None
