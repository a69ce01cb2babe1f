# barcode_hub/services/registry.py
"""
Barcode Registry - the durable record of every issued code.

Handles:
- Global code uniqueness (retired codes included, so nothing is reissued)
- One active code per (owner_entity_type, owner_entity_id, barcode_type)
- Atomic claims (insert-if-absent inside a savepoint)
- Idempotent get-or-claim for concurrent requests on the same owner
- Scanner lookups, history and tombstoning

Every read goes to the database and nothing is cached. The unique
constraints decide which of two racing claims wins.
"""
from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from barcode_hub.db_models import RegistryEntry, BarcodeType, BarcodeFormat
from barcode_hub.errors import ConflictError, ConflictReason
from barcode_hub.services.storage import storage_guard

logger = logging.getLogger(__name__)

GenerateFn = Callable[[], Awaitable[str]]


class CodeRegistry(Protocol):
    async def check_available(self, code: str) -> bool: ...

    async def claim(
        self,
        code: str,
        barcode_type: BarcodeType,
        owner_entity_type: str,
        owner_entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        fmt: BarcodeFormat = BarcodeFormat.STRUCTURED,
    ) -> RegistryEntry: ...

    async def get_active_for_owner(
        self, owner_entity_type: str, owner_entity_id: str, barcode_type: BarcodeType
    ) -> Optional[RegistryEntry]: ...

    async def get_or_claim(
        self,
        owner_entity_type: str,
        owner_entity_id: str,
        barcode_type: BarcodeType,
        generate_fn: GenerateFn,
        metadata: Optional[Dict[str, Any]] = None,
        fmt: BarcodeFormat = BarcodeFormat.STRUCTURED,
    ) -> str: ...


class BarcodeRegistry:
    """SQLAlchemy-backed registry."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _select():
        return select(RegistryEntry).execution_options(populate_existing=True)

    # =========================================================================
    # Lookup
    # =========================================================================

    async def check_available(self, code: str) -> bool:
        """True if ``code`` was never issued (retired codes are not available)."""
        async with storage_guard("registry availability check"):
            stmt = select(func.count()).select_from(RegistryEntry).where(RegistryEntry.code == code)
            result = await self.db.execute(stmt)
            return (result.scalar() or 0) == 0

    async def get_by_code(self, code: str) -> Optional[RegistryEntry]:
        """Main lookup for scanner operations."""
        code = (code or "").strip()
        if not code:
            return None
        async with storage_guard("registry lookup"):
            result = await self.db.execute(self._select().where(RegistryEntry.code == code))
            return result.scalar_one_or_none()

    async def get_active_for_owner(
        self,
        owner_entity_type: str,
        owner_entity_id: str,
        barcode_type: BarcodeType,
    ) -> Optional[RegistryEntry]:
        async with storage_guard("registry owner lookup"):
            stmt = self._select().where(
                RegistryEntry.owner_entity_type == owner_entity_type,
                RegistryEntry.owner_entity_id == owner_entity_id,
                RegistryEntry.barcode_type == barcode_type,
                RegistryEntry.retired_at.is_(None),
            )
            result = await self.db.execute(stmt)
            return result.scalar_one_or_none()

    async def history(self, owner_entity_id: str, owner_entity_type: Optional[str] = None) -> List[RegistryEntry]:
        """All entries ever issued to an entity, newest first."""
        async with storage_guard("registry history"):
            stmt = self._select().where(RegistryEntry.owner_entity_id == owner_entity_id)
            if owner_entity_type:
                stmt = stmt.where(RegistryEntry.owner_entity_type == owner_entity_type)
            stmt = stmt.order_by(RegistryEntry.created_at.desc(), RegistryEntry.id.desc())
            result = await self.db.execute(stmt)
            return list(result.scalars())

    async def count_active(self) -> int:
        async with storage_guard("registry count"):
            stmt = select(func.count()).select_from(RegistryEntry).where(RegistryEntry.retired_at.is_(None))
            result = await self.db.execute(stmt)
            return result.scalar() or 0

    # =========================================================================
    # Claim
    # =========================================================================

    async def _conflict_reason(self, code: str) -> ConflictReason:
        async with storage_guard("registry conflict lookup"):
            stmt = select(func.count()).select_from(RegistryEntry).where(RegistryEntry.code == code)
            result = await self.db.execute(stmt)
        return ConflictReason.code if (result.scalar() or 0) else ConflictReason.owner

    async def claim(
        self,
        code: str,
        barcode_type: BarcodeType,
        owner_entity_type: str,
        owner_entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        fmt: BarcodeFormat = BarcodeFormat.STRUCTURED,
    ) -> RegistryEntry:
        """
        Atomically register ``code`` for the owner.

        Raises ConflictError when the code is taken or the owner already holds
        an active code of this type. The existing row is never touched.
        """
        entry = RegistryEntry(
            code=code,
            barcode_type=barcode_type,
            format=fmt,
            owner_entity_type=owner_entity_type,
            owner_entity_id=owner_entity_id,
            entry_metadata=dict(metadata or {}),
        )
        try:
            async with storage_guard("registry claim"):
                async with self.db.begin_nested():
                    self.db.add(entry)
                    await self.db.flush()
        except IntegrityError as exc:
            reason = await self._conflict_reason(code)
            logger.info(f"Claim of {code} for {owner_entity_type}:{owner_entity_id} rejected ({reason.value})")
            raise ConflictError(reason, code) from exc

        logger.debug(f"Claimed {code} for {owner_entity_type}:{owner_entity_id}")
        return entry

    async def get_or_claim(
        self,
        owner_entity_type: str,
        owner_entity_id: str,
        barcode_type: BarcodeType,
        generate_fn: GenerateFn,
        metadata: Optional[Dict[str, Any]] = None,
        fmt: BarcodeFormat = BarcodeFormat.STRUCTURED,
    ) -> str:
        """
        Return the owner's active code, minting one through ``generate_fn`` if
        there is none.

        When a concurrent request for the same owner wins the claim, its code is
        returned instead of an error. A collision on the code itself is raised
        as ConflictError for the caller's retry loop.
        """
        existing = await self.get_active_for_owner(owner_entity_type, owner_entity_id, barcode_type)
        if existing is not None:
            return existing.code

        candidate = await generate_fn()
        try:
            entry = await self.claim(candidate, barcode_type, owner_entity_type, owner_entity_id, metadata, fmt)
            return entry.code
        except ConflictError as exc:
            if exc.reason != ConflictReason.owner:
                raise
            winner = await self.get_active_for_owner(owner_entity_type, owner_entity_id, barcode_type)
            if winner is None:
                # Winner was retired in between; let the caller retry from scratch
                raise
            logger.info(f"{owner_entity_type}:{owner_entity_id} already got {winner.code} from a concurrent request")
            return winner.code

    # =========================================================================
    # Tombstone
    # =========================================================================

    async def retire(self, code: str) -> Optional[RegistryEntry]:
        """
        Mark a code as retired. The row stays so the code is never reissued;
        the owner becomes free to receive a new one. Idempotent.
        """
        entry = await self.get_by_code(code)
        if entry is None:
            return None
        if entry.retired_at is None:
            async with storage_guard("registry retire"):
                entry.retired_at = datetime.now(timezone.utc)
                await self.db.flush()
            logger.info(f"Retired barcode {code} ({entry.owner_entity_type}:{entry.owner_entity_id})")
        return entry
