"""Replica options and logger construction."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from typing import TextIO

__all__ = ["Options", "make_logger"]

MODULE = "minbft"
_DATE_FORMAT = "%H:%M:%S"


@dataclass
class Options:
    """Logging settings of a replica."""

    log_level: int = logging.DEBUG
    log_file: TextIO = field(default_factory=lambda: sys.stdout)


def make_logger(replica_id: int, options: Options | None = None) -> logging.Logger:
    """Return the logger of a replica, writing to ``options.log_file``.

    Calling it again for the same replica replaces the previous output.
    """
    options = options if options is not None else Options()
    logger = logging.getLogger(f"{MODULE}.{replica_id}")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    fmt = (
        f"[{MODULE}] %(asctime)s.%(msecs)03d %(funcName)s \u25b6 "
        f"%(levelname).4s Replica {replica_id}: %(message)s"
    )
    handler = logging.StreamHandler(options.log_file)
    handler.setFormatter(logging.Formatter(fmt, datefmt=_DATE_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(options.log_level)
    logger.propagate = False
    return logger