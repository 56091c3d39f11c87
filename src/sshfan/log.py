"""Logger setup for sshfan diagnostics."""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logger(level: str | int = logging.WARNING) -> logging.Logger:
    logger = logging.getLogger("sshfan")
    logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT)

    # Diagnostics go to stderr so they never mix with host output
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    logger.handlers.clear()
    logger.addHandler(handler)
    logger.propagate = False
    return logger
