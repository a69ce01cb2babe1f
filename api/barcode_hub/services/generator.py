# barcode_hub/services/generator.py
"""
Barcode Generator - reserve → encode → claim, with bounded retry.

Each attempt:

    RESERVED   counter := store.reserve(type)
    ENCODED    candidate := encoder.encode(counter, type), self-checked by the validator
    CLAIMED    registry.claim(candidate, ...)            -> done
    CONFLICT   code already taken                        -> RETRY (new counter value)
    EXHAUSTED  max_retries attempts all conflicted       -> GenerationExhaustedError

The counter step is not atomic across processes, so contention shows up here
as conflicts and retries, never as duplicate codes. Storage outages and
timeouts are not retried.
"""
from __future__ import annotations
import asyncio
import logging
import random
from functools import partial
from typing import Any, AsyncContextManager, Awaitable, Callable, Dict, Iterable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from barcode_hub.database import get_session_context
from barcode_hub.db_models import BarcodeType, BarcodeFormat, DEFAULT_OWNER_TYPES
from barcode_hub.errors import (
    ConflictError, ConflictReason, GenerationExhaustedError, StorageUnavailable,
    GENERIC_GENERATION_MESSAGE,
)
from barcode_hub.models import BulkResult
from barcode_hub.services.counter_store import CounterStore, SqlCounterStore
from barcode_hub.services.encoder import BarcodeEncoder
from barcode_hub.services.registry import CodeRegistry, BarcodeRegistry
from barcode_hub.services.storage import storage_guard
from barcode_hub.services.validator import BarcodeValidator
from barcode_hub.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_BACKOFF_S = 0.5


class BarcodeGenerator:
    """Generation orchestrator. Stores are injected; nothing is shared globally."""

    def __init__(
        self,
        store: CounterStore,
        registry: CodeRegistry,
        encoder: BarcodeEncoder,
        validator: Optional[BarcodeValidator] = None,
        fmt: BarcodeFormat = BarcodeFormat.STRUCTURED,
        max_retries: Optional[int] = None,
        backoff_ms: Optional[int] = None,
        storage_timeout: Optional[float] = None,
    ):
        self.store = store
        self.registry = registry
        self.encoder = encoder
        self.format = fmt
        self.validator = validator or BarcodeValidator(encoder.prefix, fmt)
        self.max_retries = max_retries if max_retries is not None else settings.BARCODE_MAX_RETRIES
        self.backoff_ms = backoff_ms if backoff_ms is not None else settings.BARCODE_RETRY_BACKOFF_MS
        self.storage_timeout = storage_timeout if storage_timeout is not None else settings.BARCODE_STORAGE_TIMEOUT_S
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")

    @classmethod
    async def for_session(cls, db: AsyncSession, **kwargs) -> "BarcodeGenerator":
        """Wire SQL-backed stores for one session, using the persisted config."""
        store = SqlCounterStore(db)
        cfg = await store.load_config()
        encoder = BarcodeEncoder(cfg.prefix, settings.BARCODE_EAN_NAMESPACE)
        return cls(
            store,
            BarcodeRegistry(db),
            encoder,
            BarcodeValidator(cfg.prefix, cfg.format),
            fmt=cfg.format,
            **kwargs,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    async def _storage(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, self.storage_timeout)
        except asyncio.TimeoutError as exc:
            logger.error(f"{operation} timed out after {self.storage_timeout}s")
            raise StorageUnavailable(operation, "timed out") from exc

    async def _backoff(self, attempt: int) -> None:
        if self.backoff_ms <= 0:
            return
        ceiling = min(MAX_BACKOFF_S, self.backoff_ms / 1000 * 2 ** (attempt - 1))
        await asyncio.sleep(random.uniform(ceiling / 2, ceiling))

    async def _with_retries(
        self,
        op: Callable[[], Awaitable[str]],
        barcode_type: BarcodeType,
        entity_id: str,
    ) -> str:
        for attempt in range(1, self.max_retries + 1):
            try:
                return await op()
            except ConflictError as exc:
                if attempt == self.max_retries:
                    break
                logger.info(
                    f"{barcode_type.value} code for {entity_id}: attempt {attempt}/{self.max_retries} "
                    f"hit a {exc.reason.value} conflict, retrying"
                )
                await self._backoff(attempt)

        logger.warning(f"{barcode_type.value} code for {entity_id}: gave up after {self.max_retries} attempts")
        raise GenerationExhaustedError(self.max_retries, barcode_type.value, entity_id)

    async def next_candidate(self, barcode_type: BarcodeType) -> str:
        """Reserve a counter value and encode it. The result is not claimed yet."""
        counter = await self._storage("counter reserve", self.store.reserve(barcode_type))
        candidate = self.encoder.encode(counter, barcode_type, self.format)
        check = self.validator.validate(candidate)
        if not check.is_valid:
            # Encoder and validator disagree: prefix/format misconfiguration
            raise ValueError(f"Generated code {candidate} failed self-check: {', '.join(check.errors)}")
        return candidate

    async def _mint(
        self,
        barcode_type: BarcodeType,
        owner_entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]],
    ) -> str:
        candidate = await self.next_candidate(barcode_type)
        try:
            await self._storage("registry claim", self.registry.claim(
                candidate, barcode_type, owner_entity_type, entity_id, metadata, self.format,
            ))
            return candidate
        except ConflictError as exc:
            if exc.reason != ConflictReason.owner:
                raise
            # A concurrent request already gave this entity a code; converge on it
            winner = await self._storage("registry owner lookup", self.registry.get_active_for_owner(
                owner_entity_type, entity_id, barcode_type,
            ))
            if winner is None:
                raise
            return winner.code

    # =========================================================================
    # Public API
    # =========================================================================

    async def generate(
        self,
        barcode_type: BarcodeType,
        entity_id: str,
        owner_entity_type: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        owner_entity_type = owner_entity_type or DEFAULT_OWNER_TYPES[barcode_type]
        return await self._with_retries(
            lambda: self._mint(barcode_type, owner_entity_type, entity_id, metadata),
            barcode_type,
            entity_id,
        )

    async def generate_unit_code(self, entity_id: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        return await self.generate(BarcodeType.UNIT, entity_id, metadata=metadata)

    async def generate_product_code(self, entity_id: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        return await self.generate(BarcodeType.PRODUCT, entity_id, metadata=metadata)

    async def get_or_generate(
        self,
        barcode_type: BarcodeType,
        entity_id: str,
        owner_entity_type: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Idempotent: repeated calls for one entity return the same code."""
        owner_entity_type = owner_entity_type or DEFAULT_OWNER_TYPES[barcode_type]
        return await self._with_retries(
            lambda: self._storage("registry get_or_claim", self.registry.get_or_claim(
                owner_entity_type,
                entity_id,
                barcode_type,
                partial(self.next_candidate, barcode_type),
                metadata,
                self.format,
            )),
            barcode_type,
            entity_id,
        )

    async def generate_bulk(
        self,
        entity_ids: Iterable[str],
        barcode_type: BarcodeType = BarcodeType.UNIT,
        owner_entity_type: Optional[str] = None,
    ) -> Dict[str, BulkResult]:
        """
        Generate one code per entity through this generator's stores.

        Every id shares the stores' transaction, so a SQL-backed batch should
        go through generate_bulk_committed() instead.
        """
        return await _collect_bulk(
            entity_ids,
            barcode_type,
            lambda entity_id: self.generate(barcode_type, entity_id, owner_entity_type),
        )


SessionScope = Callable[[], AsyncContextManager[AsyncSession]]


async def _collect_bulk(
    entity_ids: Iterable[str],
    barcode_type: BarcodeType,
    generate_one: Callable[[str], Awaitable[str]],
) -> Dict[str, BulkResult]:
    # A failure for one id is recorded in its result and the batch goes on
    results: Dict[str, BulkResult] = {}
    for entity_id in entity_ids:
        if entity_id in results:
            continue
        try:
            code = await generate_one(entity_id)
            results[entity_id] = BulkResult(code=code)
        except GenerationExhaustedError:
            results[entity_id] = BulkResult(error=GENERIC_GENERATION_MESSAGE)
        except (StorageUnavailable, ValueError) as exc:
            logger.error(f"Bulk generation failed for {entity_id}: {exc}")
            results[entity_id] = BulkResult(error=str(exc))

    failed = sum(1 for r in results.values() if not r.ok)
    logger.info(f"Bulk {barcode_type.value} generation: {len(results) - failed} ok, {failed} failed")
    return results


async def generate_bulk_committed(
    entity_ids: Iterable[str],
    barcode_type: BarcodeType = BarcodeType.UNIT,
    owner_entity_type: Optional[str] = None,
    session_scope: SessionScope = get_session_context,
    **generator_kwargs,
) -> Dict[str, BulkResult]:
    """
    Bulk generation with one transaction per entity id.

    A code is reported only once the session that claimed it has committed.
    A failed id rolls back its own session and leaves the others alone.
    """

    async def generate_one(entity_id: str) -> str:
        async with storage_guard(f"bulk commit for {entity_id}"):
            async with session_scope() as db:
                generator = await BarcodeGenerator.for_session(db, **generator_kwargs)
                return await generator.generate(barcode_type, entity_id, owner_entity_type)

    return await _collect_bulk(entity_ids, barcode_type, generate_one)
