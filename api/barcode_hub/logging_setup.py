# -*- coding: utf-8 -*-
from __future__ import annotations
import logging, logging.handlers
from pathlib import Path

LOG_NAME = "barcode_hub.log"
_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _has_log_file(lg: logging.Logger) -> bool:
    return any(getattr(h, "baseFilename", "").endswith(LOG_NAME) for h in lg.handlers)


def setup_logging(settings, level: int = logging.INFO, console: bool = False) -> Path:
    """
    Configure rotating file logging under BARCODE_DATA_ROOT/logs/barcode_hub.log.

    ``console=True`` additionally echoes records to stderr (used by the CLI).
    Calling it twice does not stack handlers.
    """
    log_dir = Path(settings.BARCODE_DATA_ROOT).expanduser() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_NAME

    fmt = logging.Formatter(_FORMAT)
    root = logging.getLogger()
    root.setLevel(level)

    # uvicorn/fastapi loggers do not always propagate to root
    web_loggers = [logging.getLogger(name) for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi")]
    for lg in web_loggers:
        lg.setLevel(level)

    missing = [lg for lg in [root, *web_loggers] if not _has_log_file(lg)]
    if missing:
        handler = logging.handlers.RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
        handler.setFormatter(fmt)
        handler.setLevel(level)
        for lg in missing:
            lg.addHandler(handler)

    if console and not any(type(h) is logging.StreamHandler for h in root.handlers):
        stream = logging.StreamHandler()
        stream.setFormatter(fmt)
        stream.setLevel(level)
        root.addHandler(stream)

    return log_path
