# barcode_hub/cli.py
"""
barcode-hub command line.

    barcode-hub init-db
    barcode-hub generate --type unit U-1 U-2
    barcode-hub validate GPMSU001001 "GPMSX00100"
    barcode-hub config
"""
from __future__ import annotations
import argparse
import asyncio
import json
import sys
from typing import List, Optional

from barcode_hub.database import close_db, create_schema, get_session_context, init_db
from barcode_hub.db_models import BarcodeType
from barcode_hub.errors import BarcodeError
from barcode_hub.logging_setup import setup_logging
from barcode_hub.services import SqlCounterStore, BarcodeValidator, generate_bulk_committed
from barcode_hub.settings import settings


async def _init_db(args) -> int:
    await create_schema()
    async with get_session_context() as db:
        cfg = await SqlCounterStore(db).ensure_config()
    print(f"Schema ready, config: {cfg.model_dump_json()}")
    return 0


async def _generate(args) -> int:
    results = await generate_bulk_committed(args.entity_ids, BarcodeType(args.type))

    failed = 0
    for entity_id, res in results.items():
        if res.ok:
            print(f"{entity_id}\t{res.code}")
        else:
            failed += 1
            print(f"{entity_id}\tERROR: {res.error}", file=sys.stderr)
    return 1 if failed else 0


async def _validate(args) -> int:
    async with get_session_context() as db:
        cfg = await SqlCounterStore(db).load_config()
    validator = BarcodeValidator(cfg.prefix, cfg.format)

    invalid = 0
    for raw in args.codes:
        code = raw.strip()
        result = validator.validate(code)
        row = {
            "code": code,
            "scanned_format": validator.classify(code).value,
            "is_valid": result.is_valid,
            "errors": result.errors,
            "parsed": validator.parse_structured(code).model_dump(mode="json"),
        }
        print(json.dumps(row, ensure_ascii=False))
        if not result.is_valid:
            invalid += 1
    return 1 if invalid else 0


async def _config(args) -> int:
    async with get_session_context() as db:
        cfg = await SqlCounterStore(db).load_config()
    print(json.dumps(cfg.model_dump(mode="json"), indent=2))
    return 0


COMMANDS = {
    "init-db": _init_db,
    "generate": _generate,
    "validate": _validate,
    "config": _config,
}


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="barcode-hub", description="Barcode generation and registry")
    ap.add_argument("--database-url", default="", help="Override DATABASE_URL")
    sub = ap.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables and seed the barcode config")

    gen = sub.add_parser("generate", help="Generate codes for entity ids")
    gen.add_argument("--type", choices=[t.value for t in BarcodeType], default=BarcodeType.UNIT.value)
    gen.add_argument("entity_ids", nargs="+")

    val = sub.add_parser("validate", help="Validate and parse codes")
    val.add_argument("codes", nargs="+")

    sub.add_parser("config", help="Print the current barcode config")
    return ap


async def _run(args) -> int:
    await init_db(args.database_url or None)
    try:
        return await COMMANDS[args.command](args)
    finally:
        await close_db()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(settings, console=True)
    try:
        return asyncio.run(_run(args))
    except BarcodeError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
