# barcode_hub/services/counter_store.py
"""
Counter Store - per-type monotonically advancing counters.

The counters live in one JSON config row (``barcode_settings``). There is no
per-field atomic increment, so a reservation is read → +1 → write back. The
write is conditional on the row version (compare-and-set), which narrows the
race but is not what guarantees uniqueness: two callers may still end up with
the same value if the storage regresses to plain read-modify-write, and the
registry's unique constraint rejects the second claim.
"""
from __future__ import annotations
import logging
from typing import Callable, Dict, Optional, Protocol, TypeVar

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from barcode_hub.db_models import (
    BarcodeSetting, BarcodeType, BarcodeFormat, BARCODE_CONFIG_KEY,
)
from barcode_hub.errors import ConflictError, ConflictReason
from barcode_hub.models import BarcodeConfig
from barcode_hub.services.storage import storage_guard
from barcode_hub.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CounterStore(Protocol):
    async def reserve(self, barcode_type: BarcodeType) -> int: ...

    async def load_config(self) -> BarcodeConfig: ...


def default_config() -> BarcodeConfig:
    base = settings.BARCODE_COUNTER_BASE
    return BarcodeConfig(
        prefix=settings.BARCODE_PREFIX,
        format=BarcodeFormat(settings.BARCODE_FORMAT),
        counters={t.value: base for t in BarcodeType},
    )


class SqlCounterStore:
    """Counter store backed by the barcode_settings row."""

    def __init__(
        self,
        db: AsyncSession,
        cas_attempts: Optional[int] = None,
        defaults: Optional[BarcodeConfig] = None,
    ):
        self.db = db
        self.cas_attempts = cas_attempts or settings.BARCODE_COUNTER_CAS_ATTEMPTS
        self.defaults = defaults or default_config()

    # =========================================================================
    # Row access
    # =========================================================================

    async def _load_row(self) -> Optional[BarcodeSetting]:
        # populate_existing: never trust the identity map, other writers move the row
        stmt = (
            select(BarcodeSetting)
            .where(BarcodeSetting.setting_key == BARCODE_CONFIG_KEY)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def ensure_config(self) -> BarcodeConfig:
        """Seed the config row if missing; existing rows are left alone."""
        async with storage_guard("counter seed"):
            row = await self._load_row()
            if row is not None:
                return BarcodeConfig.model_validate(row.setting_value)
            try:
                async with self.db.begin_nested():
                    self.db.add(BarcodeSetting(
                        setting_key=BARCODE_CONFIG_KEY,
                        setting_value=self.defaults.model_dump(mode="json"),
                        version=0,
                    ))
                logger.info(f"Seeded barcode config: {self.defaults.model_dump(mode='json')}")
                return self.defaults.model_copy(deep=True)
            except IntegrityError:
                # Another process seeded it first
                row = await self._load_row()
                return BarcodeConfig.model_validate(row.setting_value)

    async def load_config(self) -> BarcodeConfig:
        async with storage_guard("config read"):
            row = await self._load_row()
        if row is None:
            return await self.ensure_config()
        return BarcodeConfig.model_validate(row.setting_value)

    async def _compare_and_set(self, mutate: Callable[[BarcodeConfig], T], operation: str) -> T:
        """
        Apply ``mutate`` to a fresh copy of the config and write it back only if
        nobody else wrote in between. Lost rounds are retried from a re-read.
        """
        for attempt in range(1, self.cas_attempts + 1):
            async with storage_guard(operation):
                row = await self._load_row()
                if row is None:
                    await self.ensure_config()
                    row = await self._load_row()

                cfg = BarcodeConfig.model_validate(row.setting_value)
                outcome = mutate(cfg)
                stmt = (
                    update(BarcodeSetting)
                    .where(
                        BarcodeSetting.setting_key == BARCODE_CONFIG_KEY,
                        BarcodeSetting.version == row.version,
                    )
                    .values(
                        setting_value=cfg.model_dump(mode="json"),
                        version=row.version + 1,
                        updated_at=func.now(),
                    )
                    .execution_options(synchronize_session=False)
                )
                result = await self.db.execute(stmt)

            if result.rowcount == 1:
                return outcome
            logger.info(f"{operation}: lost config write race (round {attempt}/{self.cas_attempts})")

        raise ConflictError(ConflictReason.counter)

    # =========================================================================
    # Operations
    # =========================================================================

    async def reserve(self, barcode_type: BarcodeType) -> int:
        """Advance the counter for ``barcode_type`` and return the new value."""
        def bump(cfg: BarcodeConfig) -> int:
            value = cfg.counter(barcode_type) + 1
            cfg.counters[barcode_type.value] = value
            return value

        return await self._compare_and_set(bump, "counter reserve")

    async def update_config(
        self,
        prefix: Optional[str] = None,
        fmt: Optional[BarcodeFormat] = None,
        counters: Optional[Dict[str, int]] = None,
    ) -> BarcodeConfig:
        """
        Administrative config change.

        Counters may only move forward; lowering one would hand out codes that
        may already be registered.
        """
        known = {t.value for t in BarcodeType}
        for key in (counters or {}):
            if key not in known:
                raise ValueError(f"Unknown counter type: {key}")

        def apply(cfg: BarcodeConfig) -> BarcodeConfig:
            for key, value in (counters or {}).items():
                current = cfg.counters.get(key, 0)
                if value < current:
                    raise ValueError(f"Counter '{key}' cannot decrease ({current} -> {value})")
                cfg.counters[key] = value
            if prefix is not None:
                cfg.prefix = prefix
            if fmt is not None:
                cfg.format = fmt
            return cfg

        cfg = await self._compare_and_set(apply, "config update")
        logger.info(f"Barcode config updated: {cfg.model_dump(mode='json')}")
        return cfg
