"""Logging setup for the converge CLI."""

from __future__ import annotations

import logging
import sys

# libraries that log routine work at INFO
_CHATTY_LOGGERS = ("alembic", "hishel", "httpx")


def configure_logging(*, level: int = logging.INFO, force: bool = False) -> None:
    """Send log records to stderr so stdout only carries plans and state listings.

    Third-party loggers stay at WARNING unless ``level`` is DEBUG.
    """

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
        force=force,
    )
    library_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)
