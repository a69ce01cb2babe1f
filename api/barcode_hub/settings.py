# barcode_hub/settings.py
"""
Barcode Hub Settings - PostgreSQL backed barcode registry.
"""
from __future__ import annotations
from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices

# Printed on labels: uppercase letters and digits only
PREFIX_PATTERN = r"^[A-Z0-9]+$"
PREFIX_MAX_LENGTH = 10


class Settings(BaseSettings):
    # =========================================================================
    # File Storage (logs)
    # =========================================================================
    BARCODE_DATA_ROOT: Path = Field(
        default=(Path(__file__).resolve().parents[2] / "barcode-data"),
        validation_alias=AliasChoices("BARCODE_DATA_ROOT", "bh_data_root"),
    )

    # =========================================================================
    # PostgreSQL Database
    # =========================================================================
    DB_HOST: str = Field(default="localhost", validation_alias="DB_HOST")
    DB_PORT: int = Field(default=5432, validation_alias="DB_PORT")
    DB_NAME: str = Field(default="barcode_hub", validation_alias="DB_NAME")
    DB_USER: str = Field(default="postgres", validation_alias="DB_USER")
    DB_PASSWORD: str = Field(default="postgres", validation_alias="DB_PASSWORD")

    # Connection pool settings
    DB_POOL_SIZE: int = Field(default=5, validation_alias="DB_POOL_SIZE")
    DB_MAX_OVERFLOW: int = Field(default=10, validation_alias="DB_MAX_OVERFLOW")
    DB_ECHO: bool = Field(default=False, validation_alias="DB_ECHO")

    # Full URL override (e.g. sqlite+aiosqlite:///./barcodes.db for local runs)
    DATABASE_URL: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "bh_database_url"),
    )

    # Label printing / scanner UI origins
    CORS_ORIGINS: List[str] = Field(default_factory=lambda: ["http://localhost:5173"])

    # =========================================================================
    # Barcode generation
    # =========================================================================
    BARCODE_PREFIX: str = Field(
        default="GPMS", min_length=1, max_length=PREFIX_MAX_LENGTH, pattern=PREFIX_PATTERN,
    )
    BARCODE_FORMAT: str = Field(
        default="STRUCTURED",
        description="STRUCTURED or CHECKSUM_NUMERIC"
    )
    BARCODE_COUNTER_BASE: int = Field(default=1000, ge=0)
    BARCODE_MAX_RETRIES: int = Field(default=5, ge=1)
    BARCODE_RETRY_BACKOFF_MS: int = Field(
        default=10,
        ge=0,
        description="Base delay between conflicting attempts, 0 disables backoff"
    )
    BARCODE_STORAGE_TIMEOUT_S: float = Field(default=5.0, gt=0)
    BARCODE_COUNTER_CAS_ATTEMPTS: int = Field(default=3, ge=1)
    BARCODE_EAN_NAMESPACE: str = Field(default="200", pattern=r"^\d{3}$")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

settings = Settings()
