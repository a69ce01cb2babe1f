# barcode_hub/services/__init__.py
"""
Business logic services for Barcode Hub.
"""
from barcode_hub.services.counter_store import CounterStore, SqlCounterStore
from barcode_hub.services.encoder import BarcodeEncoder
from barcode_hub.services.validator import BarcodeValidator
from barcode_hub.services.registry import CodeRegistry, BarcodeRegistry
from barcode_hub.services.generator import BarcodeGenerator, generate_bulk_committed

__all__ = [
    "CounterStore",
    "SqlCounterStore",
    "BarcodeEncoder",
    "BarcodeValidator",
    "CodeRegistry",
    "BarcodeRegistry",
    "BarcodeGenerator",
    "generate_bulk_committed",
]
