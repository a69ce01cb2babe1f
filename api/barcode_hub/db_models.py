# barcode_hub/db_models.py
"""
SQLAlchemy ORM Models for Barcode Hub.

2 tables: the singleton barcode configuration row and the barcode registry.
"""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional
import enum

from sqlalchemy import (
    String, Integer, BigInteger, DateTime, Index, UniqueConstraint,
    Enum as SQLEnum, JSON, text, func
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import JSONB

from barcode_hub.database import Base

# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")
JSONDoc = JSON().with_variant(JSONB(), "postgresql")

BARCODE_CONFIG_KEY = "barcode_config"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

# ============================================================================
# ENUMS
# ============================================================================

class BarcodeType(str, enum.Enum):
    UNIT = "unit"
    PRODUCT = "product"


class BarcodeFormat(str, enum.Enum):
    STRUCTURED = "STRUCTURED"
    CHECKSUM_NUMERIC = "CHECKSUM_NUMERIC"


# Owner entity type used for each barcode type by the generator
DEFAULT_OWNER_TYPES = {
    BarcodeType.UNIT: "product_unit",
    BarcodeType.PRODUCT: "product",
}


# ============================================================================
# 1. BARCODE SETTINGS (singleton config row)
# ============================================================================

class BarcodeSetting(Base):
    __tablename__ = "barcode_settings"

    setting_key: Mapped[str] = mapped_column(String(100), primary_key=True)
    # {"prefix": "GPMS", "format": "STRUCTURED", "counters": {"unit": 1000, "product": 1000}}
    setting_value: Mapped[dict] = mapped_column(JSONDoc, nullable=False)
    # Bumped on every write; conditional updates compare against it
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


# ============================================================================
# 2. BARCODE REGISTRY
# ============================================================================

class RegistryEntry(Base):
    __tablename__ = "barcode_registry"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    barcode_type: Mapped[BarcodeType] = mapped_column(
        SQLEnum(BarcodeType, name="barcode_type"),
        nullable=False
    )
    format: Mapped[BarcodeFormat] = mapped_column(
        SQLEnum(BarcodeFormat, name="barcode_format"),
        default=BarcodeFormat.STRUCTURED,
        nullable=False
    )
    owner_entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    owner_entity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    entry_metadata: Mapped[dict] = mapped_column("metadata", JSONDoc, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    # Tombstone: retired codes stay in the table so they are never reissued
    retired_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        # Global uniqueness, including retired codes
        UniqueConstraint("code", name="uq_barcode_registry_code"),
        # One active code per owner per barcode type
        Index(
            "idx_barcode_registry_active_owner",
            "owner_entity_type", "owner_entity_id", "barcode_type",
            unique=True,
            postgresql_where=text("retired_at IS NULL"),
            sqlite_where=text("retired_at IS NULL"),
        ),
        Index("idx_barcode_registry_owner_id", "owner_entity_id"),
    )

    @property
    def is_active(self) -> bool:
        return self.retired_at is None

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "barcode_type": self.barcode_type.value,
            "format": self.format.value,
            "owner_entity_type": self.owner_entity_type,
            "owner_entity_id": self.owner_entity_id,
            "metadata": self.entry_metadata or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "retired_at": self.retired_at.isoformat() if self.retired_at else None,
            "is_active": self.is_active,
        }
