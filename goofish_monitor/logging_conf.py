"""Logging setup."""
import logging
import sys

from goofish_monitor.config import config

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger once for console output."""
    root = logging.getLogger()
    root.setLevel((level or config.LOG_LEVEL).upper())

    if not any(getattr(h, "_goofish_monitor", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._goofish_monitor = True
        root.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
