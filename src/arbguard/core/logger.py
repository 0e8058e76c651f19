from __future__ import annotations
import logging, sys

FORMAT = "%(asctime)s | %(levelname)s | %(module)s | %(message)s"

def setup_console_logger(name: str = "arbguard", level: str = "INFO") -> logging.Logger:
    """Console handler for the arbguard logger tree. Idempotent."""
    logger = logging.getLogger(name)
    logger.setLevel(level.upper())
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(FORMAT))
        logger.addHandler(handler)
    return logger
