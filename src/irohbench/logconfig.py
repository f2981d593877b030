from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def default_level() -> str:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    return level if level in LEVELS else "INFO"


def setup_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or default_level()).upper()),
        format=LOG_FORMAT,
    )
