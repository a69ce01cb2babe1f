"""
Shared fixtures: an in-memory SQLite database and in-memory store fakes.

AsyncSession is not safe for concurrent use, so the concurrency tests run
the generator against the fakes below instead of the SQL stores.
"""

import asyncio
import os
import tempfile
from typing import Any, Dict, Optional, Set

import pytest
from sqlalchemy.pool import StaticPool

# Keep log files out of the repo; must happen before barcode_hub.settings loads
os.environ.setdefault("BARCODE_DATA_ROOT", tempfile.mkdtemp(prefix="barcode-hub-tests-"))

from barcode_hub.database import close_db, create_schema, get_session_context, init_db  # noqa: E402
from barcode_hub.db_models import BarcodeFormat, BarcodeType  # noqa: E402
from barcode_hub.errors import ConflictError, ConflictReason, StorageUnavailable  # noqa: E402
from barcode_hub.models import BarcodeConfig  # noqa: E402
from barcode_hub.services import BarcodeEncoder, BarcodeGenerator  # noqa: E402

PREFIX = "GPMS"


# ============================================================================
# SQL fixtures
# ============================================================================

@pytest.fixture
async def db_engine():
    """Fresh in-memory database with the schema created."""
    await init_db("sqlite+aiosqlite://", poolclass=StaticPool)
    await create_schema()
    yield
    await close_db()


@pytest.fixture
async def db(db_engine):
    """A session on the in-memory database, committed at teardown."""
    async with get_session_context() as session:
        yield session


# ============================================================================
# In-memory fakes
# ============================================================================

class FakeEntry:
    def __init__(self, code, barcode_type, owner_entity_type, owner_entity_id):
        self.code = code
        self.barcode_type = barcode_type
        self.owner_entity_type = owner_entity_type
        self.owner_entity_id = owner_entity_id


class FakeCounterStore:
    """
    Counter store kept in a dict.

    With ``lost_updates=True`` a reservation yields between read and write,
    so concurrent callers compute and return the same value.
    """

    def __init__(self, base: int = 1000, lost_updates: bool = False, stuck: bool = False):
        self.counters = {t.value: base for t in BarcodeType}
        self.lost_updates = lost_updates
        self.stuck = stuck
        self.calls = 0

    async def reserve(self, barcode_type: BarcodeType) -> int:
        self.calls += 1
        current = self.counters[barcode_type.value]
        if self.lost_updates:
            await asyncio.sleep(0)
        value = current + 1
        if not self.stuck:
            self.counters[barcode_type.value] = value
        return value

    async def load_config(self) -> BarcodeConfig:
        return BarcodeConfig(prefix=PREFIX, counters=dict(self.counters))


class SlowCounterStore(FakeCounterStore):
    """Never answers in time."""

    async def reserve(self, barcode_type: BarcodeType) -> int:
        await asyncio.sleep(10)
        return await super().reserve(barcode_type)


class FakeRegistry:
    """Registry enforcing both uniqueness rules on two dicts."""

    def __init__(self, fail_for: Optional[Set[str]] = None):
        self.by_code: Dict[str, FakeEntry] = {}
        self.by_owner: Dict[tuple, FakeEntry] = {}
        self.fail_for = fail_for or set()

    async def check_available(self, code: str) -> bool:
        return code not in self.by_code

    async def claim(
        self,
        code: str,
        barcode_type: BarcodeType,
        owner_entity_type: str,
        owner_entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        fmt: BarcodeFormat = BarcodeFormat.STRUCTURED,
    ) -> FakeEntry:
        if owner_entity_id in self.fail_for:
            raise StorageUnavailable("registry claim", "connection reset")
        # Suspension point, like a network round trip
        await asyncio.sleep(0)
        if code in self.by_code:
            raise ConflictError(ConflictReason.code, code)
        owner_key = (owner_entity_type, owner_entity_id, barcode_type)
        if owner_key in self.by_owner:
            raise ConflictError(ConflictReason.owner, code)
        entry = FakeEntry(code, barcode_type, owner_entity_type, owner_entity_id)
        self.by_code[code] = entry
        self.by_owner[owner_key] = entry
        return entry

    async def get_active_for_owner(self, owner_entity_type, owner_entity_id, barcode_type):
        return self.by_owner.get((owner_entity_type, owner_entity_id, barcode_type))

    async def get_or_claim(
        self,
        owner_entity_type,
        owner_entity_id,
        barcode_type,
        generate_fn,
        metadata=None,
        fmt=BarcodeFormat.STRUCTURED,
    ) -> str:
        existing = await self.get_active_for_owner(owner_entity_type, owner_entity_id, barcode_type)
        if existing is not None:
            return existing.code
        candidate = await generate_fn()
        try:
            return (await self.claim(candidate, barcode_type, owner_entity_type, owner_entity_id)).code
        except ConflictError as exc:
            if exc.reason != ConflictReason.owner:
                raise
            return (await self.get_active_for_owner(owner_entity_type, owner_entity_id, barcode_type)).code


@pytest.fixture
def fake_store():
    return FakeCounterStore()


@pytest.fixture
def fake_registry():
    return FakeRegistry()


@pytest.fixture
def make_generator():
    """Build a generator over arbitrary stores; backoff disabled by default."""

    def _make(store, registry, fmt=BarcodeFormat.STRUCTURED, **kwargs):
        kwargs.setdefault("backoff_ms", 0)
        kwargs.setdefault("storage_timeout", 1.0)
        return BarcodeGenerator(store, registry, BarcodeEncoder(PREFIX), fmt=fmt, **kwargs)

    return _make
