"""Shared logging format and configuration for aristo-stream services."""

import logging
import os

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%SZ"


def configure_logging(level: int | str | None = None) -> None:
    """
    Configure the root logger for this process. Call once at application startup.

    level defaults to the LOG_LEVEL env var (e.g. DEBUG), then INFO.
    """
    if level is None:
        level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    # botocore logs every retry at DEBUG; keep it quiet unless explicitly asked for.
    logging.getLogger("botocore").setLevel(logging.WARNING)
