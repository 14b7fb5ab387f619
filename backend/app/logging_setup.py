from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE")

_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def setup_logging(level: str = LOG_LEVEL, log_file: str | None = LOG_FILE) -> Path | None:
    """Console + (optionnel) fichier tournant ; idempotent."""
    fmt = logging.Formatter(_FORMAT)
    root = logging.getLogger()
    root.setLevel(level)

    if not any(getattr(h, "_emballages", False) for h in root.handlers):
        stream = logging.StreamHandler()
        stream.setFormatter(fmt)
        stream._emballages = True
        root.addHandler(stream)

    log_path = None
    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        # avoid duplicate handlers
        if not any(getattr(h, "baseFilename", "") == str(log_path.resolve()) for h in root.handlers):
            handler = logging.handlers.RotatingFileHandler(
                log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8"
            )
            handler.setFormatter(fmt)
            root.addHandler(handler)

    # uvicorn / fastapi remontent au root
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        logging.getLogger(name).setLevel(level)

    return log_path
