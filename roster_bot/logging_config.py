import logging
import os
import sys

ROOT_LOGGER = "roster"


def _level_from_env() -> int:
    name = os.getenv("ROSTER_LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def setup_logging(level: int | None = None) -> logging.Logger:
    logger = logging.getLogger(ROOT_LOGGER)
    if logger.handlers:
        return logger  # already configured
    logger.setLevel(level if level is not None else _level_from_env())
    handler = logging.StreamHandler(sys.stdout)
    fmt = logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    handler.setFormatter(fmt)
    logger.addHandler(handler)
    # keep discord.py quiet unless we are debugging the roster itself
    if logger.level > logging.DEBUG:
        for name in ("discord", "discord.client", "discord.gateway", "discord.http"):
            logging.getLogger(name).setLevel(logging.WARNING)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return the ``roster.<name>`` child logger."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
