import logging

from meterpay.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Apply the configured log level to the root and package loggers."""
    resolved = (level or settings.LOG_LEVEL).upper()
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    logging.getLogger("meterpay").setLevel(resolved)
