# barcode_hub/routers/barcodes.py
"""
Barcodes Router - generation, scanner validation and registry lookups.

Inventory/product CRUD calls the generation endpoints when a new physical
unit or product needs a code; label printing and scanners only ever see the
plain code strings returned here.
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Body, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from barcode_hub.database import get_session
from barcode_hub.db_models import BarcodeFormat, BarcodeType, DEFAULT_OWNER_TYPES, RegistryEntry
from barcode_hub.errors import (
    ConflictError, GenerationExhaustedError, StorageUnavailable, GENERIC_GENERATION_MESSAGE,
)
from barcode_hub.models import (
    BarcodeConfig, BulkGenerateIn, BulkGenerateOut, ConfigUpdateIn,
    GenerateIn, GenerateOut, ParsedCodeInfo, ValidateOut,
)
from barcode_hub.services import (
    BarcodeGenerator, BarcodeRegistry, BarcodeValidator, SqlCounterStore, generate_bulk_committed,
)
from barcode_hub.services.encoder import COUNTER_WIDTH

router = APIRouter(prefix="/barcodes", tags=["Barcodes"])


# ============================================================================
# Helpers
# ============================================================================

def _storage_error(exc: StorageUnavailable) -> HTTPException:
    return HTTPException(503, detail=f"Barcode storage unavailable: {exc.operation}")


async def _validator(db: AsyncSession) -> BarcodeValidator:
    cfg = await SqlCounterStore(db).load_config()
    return BarcodeValidator(cfg.prefix, cfg.format)


def _issued_validator(entry: RegistryEntry, current: BarcodeValidator) -> BarcodeValidator:
    if entry.format != BarcodeFormat.STRUCTURED:
        return BarcodeValidator(current.prefix, entry.format)
    # structured codes carry the prefix they were issued under
    issued_prefix = entry.code[:-(COUNTER_WIDTH + 1)] or current.prefix
    return BarcodeValidator(issued_prefix, entry.format)


async def _get_or_generate(
    db: AsyncSession,
    barcode_type: BarcodeType,
    entity_id: str,
    metadata: Dict[str, Any],
) -> GenerateOut:
    try:
        generator = await BarcodeGenerator.for_session(db)
        code = await generator.get_or_generate(barcode_type, entity_id, metadata=metadata)
    except GenerationExhaustedError as exc:
        raise HTTPException(409, detail={"message": GENERIC_GENERATION_MESSAGE, "attempts": exc.attempts})
    except StorageUnavailable as exc:
        raise _storage_error(exc)

    return GenerateOut(
        code=code,
        barcode_type=barcode_type,
        owner_entity_type=DEFAULT_OWNER_TYPES[barcode_type],
        owner_entity_id=entity_id,
    )


# ============================================================================
# Generation
# ============================================================================

@router.post("/units/{entity_id}", response_model=GenerateOut)
async def generate_unit_barcode(
    entity_id: str,
    request: Optional[GenerateIn] = Body(default=None),
    db: AsyncSession = Depends(get_session),
):
    """Get the unit's code, minting one on first request."""
    return await _get_or_generate(db, BarcodeType.UNIT, entity_id, request.metadata if request else {})


@router.post("/products/{entity_id}", response_model=GenerateOut)
async def generate_product_barcode(
    entity_id: str,
    request: Optional[GenerateIn] = Body(default=None),
    db: AsyncSession = Depends(get_session),
):
    """Get the product's code, minting one on first request."""
    return await _get_or_generate(db, BarcodeType.PRODUCT, entity_id, request.metadata if request else {})


@router.post("/bulk", response_model=BulkGenerateOut)
async def generate_bulk(request: BulkGenerateIn):
    """
    Generate codes for many entities at once.

    Each entity id is claimed and committed in its own transaction, and
    per-entity failures are reported in the result map.
    """
    results = await generate_bulk_committed(request.entity_ids, request.barcode_type)
    failed = sum(1 for r in results.values() if not r.ok)
    return BulkGenerateOut(results=results, succeeded=len(results) - failed, failed=failed)


# ============================================================================
# Scanner input
# ============================================================================

@router.get("/validate", response_model=ValidateOut)
async def validate_barcode(
    code: str = Query(""),
    db: AsyncSession = Depends(get_session),
):
    """
    Validate a typed or scanned code; every structural defect is reported.

    A code found in the registry is checked against the format it was issued
    in, so switching the configured format does not invalidate printed labels.
    """
    scanned = code.strip()
    try:
        validator = await _validator(db)
        entry = await BarcodeRegistry(db).get_by_code(scanned) if scanned else None
    except StorageUnavailable as exc:
        raise _storage_error(exc)
    if entry is not None:
        validator = _issued_validator(entry, validator)
    return ValidateOut(
        code=scanned,
        scanned_format=validator.classify(scanned),
        validation=validator.validate(scanned),
        registered=entry is not None,
    )


@router.get("/parse", response_model=ParsedCodeInfo)
async def parse_barcode(
    code: str = Query(""),
    db: AsyncSession = Depends(get_session),
):
    try:
        validator = await _validator(db)
    except StorageUnavailable as exc:
        raise _storage_error(exc)
    return validator.parse_structured(code.strip())


# ============================================================================
# Registry
# ============================================================================

@router.get("/lookup/{code}")
async def lookup_barcode(
    code: str,
    db: AsyncSession = Depends(get_session),
):
    """Resolve a scanned code to its owning entity."""
    try:
        entry = await BarcodeRegistry(db).get_by_code(code)
    except StorageUnavailable as exc:
        raise _storage_error(exc)
    if not entry:
        raise HTTPException(404, detail=f"Barcode not found: {code}")
    return entry.to_dict()


@router.get("/history/{entity_id}")
async def barcode_history(
    entity_id: str,
    owner_entity_type: Optional[str] = None,
    db: AsyncSession = Depends(get_session),
) -> List[Dict[str, Any]]:
    try:
        entries = await BarcodeRegistry(db).history(entity_id, owner_entity_type)
    except StorageUnavailable as exc:
        raise _storage_error(exc)
    return [e.to_dict() for e in entries]


@router.post("/{code}/retire")
async def retire_barcode(
    code: str,
    db: AsyncSession = Depends(get_session),
):
    """Tombstone a code when its entity is retired. The code is never reissued."""
    try:
        entry = await BarcodeRegistry(db).retire(code)
    except StorageUnavailable as exc:
        raise _storage_error(exc)
    if not entry:
        raise HTTPException(404, detail=f"Barcode not found: {code}")
    return entry.to_dict()


# ============================================================================
# Config
# ============================================================================

@router.get("/config", response_model=BarcodeConfig)
async def get_barcode_config(db: AsyncSession = Depends(get_session)):
    try:
        return await SqlCounterStore(db).load_config()
    except StorageUnavailable as exc:
        raise _storage_error(exc)


@router.put("/config", response_model=BarcodeConfig)
async def update_barcode_config(
    request: ConfigUpdateIn,
    db: AsyncSession = Depends(get_session),
):
    try:
        return await SqlCounterStore(db).update_config(
            prefix=request.prefix,
            fmt=request.format,
            counters=request.counters,
        )
    except ValueError as e:
        raise HTTPException(400, detail=str(e))
    except ConflictError:
        raise HTTPException(409, detail="Barcode config was changed concurrently, try again")
    except StorageUnavailable as exc:
        raise _storage_error(exc)
