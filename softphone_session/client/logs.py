import logging
import sys

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def setup_logging(level: str | int = logging.INFO) -> logging.Logger:
    """Attach a console handler to the ``softphone`` logger tree.

    Module loggers live under ``softphone.*``; credentials are never passed
    to them, only usernames and outcomes.
    """
    logger = logging.getLogger("softphone")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
        logger.addHandler(handler)
    logger.propagate = False
    return logger
