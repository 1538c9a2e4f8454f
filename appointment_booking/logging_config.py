import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_handler: logging.Handler | None = None


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single stdout handler to the package logger."""
    global _handler

    logger = logging.getLogger("appointment_booking")
    logger.setLevel(level.upper())
    if _handler is None:
        _handler = logging.StreamHandler(sys.stdout)
        _handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(_handler)
    _handler.setLevel(level.upper())
    logger.propagate = False
    return logger
