# util/logging.py
import logging
import os
import sys

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logger(name: str, level: str | int | None = None) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level, logging.INFO) if isinstance(level, str) else level)
    # http + db drivers are chatty at INFO
    for noisy in ("httpx", "httpcore", "psycopg", "psycopg.pool"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    return logger


def key_preview(secret: str | None) -> str:
    """Loggable fingerprint of an API key: prefix + length, never the key itself."""
    if not secret:
        return "<missing>"
    return f"{secret[:5]}… len={len(secret)}"
