"""
Tests for the HTTP API (barcodes router + /health).
"""

import pytest
from httpx import ASGITransport, AsyncClient

from barcode_hub.db_models import BarcodeType
from barcode_hub.errors import GENERIC_GENERATION_MESSAGE
from barcode_hub.main import app
from barcode_hub.services import BarcodeGenerator

from conftest import FakeCounterStore, FakeRegistry


@pytest.fixture
async def client(db_engine):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def patch_generator(monkeypatch, make_generator):
    """Make the router build its generator over the given fakes."""

    def _patch(store, registry, **kwargs):
        async def for_session(cls, db, **_):
            return make_generator(store, registry, **kwargs)

        monkeypatch.setattr(BarcodeGenerator, "for_session", classmethod(for_session))

    return _patch


@pytest.mark.asyncio
class TestGenerationEndpoints:
    """Test unit/product/bulk generation."""

    async def test_unit_code(self, client):
        resp = await client.post("/barcodes/units/U-1")
        assert resp.status_code == 200
        assert resp.json() == {
            "code": "GPMSU001001",
            "barcode_type": "unit",
            "owner_entity_type": "product_unit",
            "owner_entity_id": "U-1",
        }

    async def test_unit_code_idempotent(self, client):
        first = (await client.post("/barcodes/units/U-1")).json()["code"]
        second = (await client.post("/barcodes/units/U-1")).json()["code"]
        assert first == second

    async def test_metadata_stored(self, client):
        resp = await client.post("/barcodes/units/U-7", json={"metadata": {"sku": "RING-001"}})
        code = resp.json()["code"]
        lookup = (await client.get(f"/barcodes/lookup/{code}")).json()
        assert lookup["metadata"] == {"sku": "RING-001"}
        assert lookup["is_active"] is True

    async def test_product_code(self, client):
        resp = await client.post("/barcodes/products/P-1")
        assert resp.json()["code"] == "GPMSP001001"
        assert resp.json()["owner_entity_type"] == "product"

    async def test_bulk(self, client):
        resp = await client.post("/barcodes/bulk", json={"entity_ids": ["U-1", "U-2"]})
        body = resp.json()
        assert resp.status_code == 200
        assert body["succeeded"] == 2
        assert body["failed"] == 0
        assert body["results"]["U-2"]["code"] == "GPMSU001002"

    async def test_bulk_partial_failure(self, client, patch_generator):
        patch_generator(FakeCounterStore(), FakeRegistry(fail_for={"U-2"}))
        resp = await client.post("/barcodes/bulk", json={"entity_ids": ["U-1", "U-2", "U-3"]})
        body = resp.json()
        assert resp.status_code == 200
        assert body["succeeded"] == 2
        assert body["failed"] == 1
        assert body["results"]["U-2"]["code"] is None
        # U-2 burned counter 1002 before its claim failed
        assert body["results"]["U-3"]["code"] == "GPMSU001003"

    async def test_bulk_requires_ids(self, client):
        resp = await client.post("/barcodes/bulk", json={"entity_ids": []})
        assert resp.status_code == 422

    async def test_exhausted_is_409(self, client, patch_generator):
        registry = FakeRegistry()
        await registry.claim("GPMSU001001", BarcodeType.UNIT, "product_unit", "legacy")
        patch_generator(FakeCounterStore(stuck=True), registry, max_retries=2)

        resp = await client.post("/barcodes/units/U-1")
        assert resp.status_code == 409
        assert resp.json()["detail"] == {"message": GENERIC_GENERATION_MESSAGE, "attempts": 2}

    async def test_storage_error_is_503(self, client, patch_generator):
        patch_generator(FakeCounterStore(), FakeRegistry(fail_for={"U-1"}))
        resp = await client.post("/barcodes/units/U-1")
        assert resp.status_code == 503


@pytest.mark.asyncio
class TestScannerEndpoints:
    """Test validate/parse/lookup."""

    async def test_validate_valid(self, client):
        resp = await client.get("/barcodes/validate", params={"code": " GPMSU001001\r\n"})
        body = resp.json()
        assert body["code"] == "GPMSU001001"
        assert body["scanned_format"] == "structured"
        assert body["validation"]["is_valid"] is True

    async def test_validate_reports_defects(self, client):
        resp = await client.get("/barcodes/validate", params={"code": "GPMSX001001"})
        body = resp.json()
        assert body["validation"]["is_valid"] is False
        assert body["validation"]["errors"] == ["invalid_type_letter"]
        assert body["scanned_format"] == "unknown"

    async def test_validate_ean13(self, client):
        resp = await client.get("/barcodes/validate", params={"code": "4006381333931"})
        assert resp.json()["scanned_format"] == "ean13"

    async def test_registered_code_keeps_issued_format(self, client):
        old = (await client.post("/barcodes/units/U-1")).json()["code"]
        await client.put("/barcodes/config", json={"format": "CHECKSUM_NUMERIC"})

        body = (await client.get("/barcodes/validate", params={"code": old})).json()
        assert body["registered"] is True
        assert body["validation"]["is_valid"] is True
        assert body["validation"]["format"] == "STRUCTURED"

    async def test_unregistered_code_uses_current_format(self, client):
        await client.put("/barcodes/config", json={"format": "CHECKSUM_NUMERIC"})
        body = (await client.get("/barcodes/validate", params={"code": "GPMSU001001"})).json()
        assert body["registered"] is False
        assert body["validation"]["is_valid"] is False

    async def test_parse(self, client):
        resp = await client.get("/barcodes/parse", params={"code": "GPMSU001234"})
        assert resp.json() == {"prefix": "GPMS", "type": "unit", "counter": 1234, "is_valid": True}

    async def test_parse_invalid(self, client):
        resp = await client.get("/barcodes/parse", params={"code": "junk"})
        assert resp.status_code == 200
        assert resp.json()["is_valid"] is False

    async def test_lookup_missing(self, client):
        resp = await client.get("/barcodes/lookup/GPMSU999999")
        assert resp.status_code == 404


@pytest.mark.asyncio
class TestRegistryEndpoints:
    """Test retire and history."""

    async def test_retire_then_reissue_owner(self, client):
        old = (await client.post("/barcodes/units/U-1")).json()["code"]

        resp = await client.post(f"/barcodes/{old}/retire")
        assert resp.status_code == 200
        assert resp.json()["is_active"] is False
        assert resp.json()["retired_at"] is not None

        new = (await client.post("/barcodes/units/U-1")).json()["code"]
        assert new != old

        history = (await client.get("/barcodes/history/U-1")).json()
        assert [h["code"] for h in history] == [new, old]

    async def test_retire_missing(self, client):
        resp = await client.post("/barcodes/GPMSU999999/retire")
        assert resp.status_code == 404


@pytest.mark.asyncio
class TestConfigEndpoints:
    """Test config read/update."""

    async def test_get_config(self, client):
        resp = await client.get("/barcodes/config")
        assert resp.json() == {"prefix": "GPMS", "format": "STRUCTURED", "counters": {"unit": 1000, "product": 1000}}

    async def test_raise_counter(self, client):
        resp = await client.put("/barcodes/config", json={"counters": {"unit": 5000}})
        assert resp.status_code == 200
        assert resp.json()["counters"]["unit"] == 5000
        assert (await client.post("/barcodes/units/U-1")).json()["code"] == "GPMSU005001"

    async def test_lower_counter_rejected(self, client):
        await client.put("/barcodes/config", json={"counters": {"unit": 5000}})
        resp = await client.put("/barcodes/config", json={"counters": {"unit": 10}})
        assert resp.status_code == 400
        assert (await client.get("/barcodes/config")).json()["counters"]["unit"] == 5000

    async def test_unknown_counter_rejected(self, client):
        resp = await client.put("/barcodes/config", json={"counters": {"pallet": 1}})
        assert resp.status_code == 400

    @pytest.mark.parametrize("prefix", ["ABCDEFGHIJK", "gpms", "GP-MS", "GPMS\n", ""])
    async def test_bad_prefix_rejected(self, client, prefix):
        resp = await client.put("/barcodes/config", json={"prefix": prefix})
        assert resp.status_code == 422
        assert (await client.get("/barcodes/config")).json()["prefix"] == "GPMS"

    async def test_prefix_change(self, client):
        resp = await client.put("/barcodes/config", json={"prefix": "AB12"})
        assert resp.json()["prefix"] == "AB12"
        assert (await client.post("/barcodes/units/U-1")).json()["code"] == "AB12U001001"

    async def test_switch_format(self, client):
        resp = await client.put("/barcodes/config", json={"format": "CHECKSUM_NUMERIC"})
        assert resp.json()["format"] == "CHECKSUM_NUMERIC"
        code = (await client.post("/barcodes/units/U-1")).json()["code"]
        assert len(code) == 13 and code.isdigit()


@pytest.mark.asyncio
async def test_health(client):
    await client.post("/barcodes/units/U-1")
    resp = await client.get("/health")
    body = resp.json()
    assert body["status"] == "ok"
    assert body["database"]["status"] == "healthy"
    assert body["active_barcodes"] == 1
