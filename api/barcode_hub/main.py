# barcode_hub/main.py
# Barcode Hub - unit/product barcode generation + uniqueness registry
from __future__ import annotations
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from barcode_hub.settings import settings
from barcode_hub.database import init_db, close_db, create_schema, check_db_health, get_session_context
from barcode_hub.errors import StorageUnavailable
from barcode_hub.logging_setup import setup_logging
from barcode_hub.routers.barcodes import router as barcodes_router
from barcode_hub.services import BarcodeRegistry, SqlCounterStore

__version__ = "1.0.0"

logger = logging.getLogger(__name__)

# ---------------------------------------------------------
# Logging setup
# ---------------------------------------------------------
setup_logging(settings)


# ---------------------------------------------------------
# Lifespan: Database init/cleanup
# ---------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    await init_db()
    await create_schema()
    async with get_session_context() as db:
        cfg = await SqlCounterStore(db).ensure_config()
    logger.info(f"Barcode Hub started (prefix={cfg.prefix}, format={cfg.format.value})")
    yield
    await close_db()
    logger.info("Barcode Hub stopped, database disconnected")


# ---------------------------------------------------------
# FastAPI app + CORS
# ---------------------------------------------------------
app = FastAPI(
    title="Barcode Hub API",
    version=__version__,
    description="Unit/product barcode generation, validation and registry",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["*"],
)

app.include_router(barcodes_router)


# ---------------------------------------------------------
# Endpoints
# ---------------------------------------------------------
@app.get("/health")
async def health():
    """Health check endpoint with database and registry status."""
    result = {
        "status": "ok",
        "version": __version__,
    }
    db_health = await check_db_health()
    result["database"] = db_health
    if db_health.get("status") != "healthy":
        result["status"] = "degraded"
        return result

    try:
        async with get_session_context() as db:
            result["active_barcodes"] = await BarcodeRegistry(db).count_active()
    except StorageUnavailable as e:
        logger.error(f"Health check could not count barcodes: {e}")
        result["status"] = "degraded"
    return result
