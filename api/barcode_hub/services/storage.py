# barcode_hub/services/storage.py
"""Mapping of low-level database failures onto the barcode error taxonomy."""
from __future__ import annotations
import logging
from contextlib import asynccontextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from barcode_hub.errors import StorageUnavailable

logger = logging.getLogger(__name__)


@asynccontextmanager
async def storage_guard(operation: str):
    """
    Translate driver/connection errors into StorageUnavailable.

    IntegrityError passes through untouched: uniqueness violations are
    conflicts, not outages, and the caller maps them itself.
    """
    try:
        yield
    except IntegrityError:
        raise
    except (SQLAlchemyError, OSError) as exc:
        logger.error(f"Storage failure during {operation}: {exc}")
        raise StorageUnavailable(operation, str(exc)) from exc
