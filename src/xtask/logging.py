# logging.py
from __future__ import annotations

import logging
import os


_configured = False

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def _ensure_base_logger() -> None:
    global _configured
    if _configured:
        return
    level = os.getenv("XTASK_LOG_LEVEL", "WARNING").upper()
    root = logging.getLogger("xtask")
    root.setLevel(getattr(logging, level, logging.WARNING))
    # Do not duplicate handlers if already set
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    _ensure_base_logger()
    return logging.getLogger(name)


def set_level(level: int | str) -> None:
    """Override the level of every xtask logger (``--debug`` uses this)."""
    _ensure_base_logger()
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.WARNING)
    logging.getLogger("xtask").setLevel(level)
