"""
Logging for supplier-file conversions.

Loggers live under ``product_mapper.<module>`` (``get_logger("pipeline")``
and so on). What lands here:

* INFO: rule and dictionary hits, learned corrections applied or stored,
  one summary line per converted file;
* DEBUG: extraction misses, skipped title rows, dropped records;
* WARNING: each failed row (``Row N: message``) and cancellation.

``configure_logging`` is idempotent. The console handler writes to stderr
because the CLI prints JSON or CSV on stdout.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional


_CONFIGURED = False

LOG_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_NAMESPACE = "product_mapper"


def configure_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
) -> None:
    """Set up the root logger for the ``product_mapper`` namespace.

    Parameters
    ----------
    level:
        Minimum severity to emit.
    log_file:
        If provided, a ``FileHandler`` is added alongside the console handler.
    """
    global _CONFIGURED  # noqa: PLW0603
    if _CONFIGURED:
        return

    root = logging.getLogger(_NAMESPACE)
    root.setLevel(level)
    root.propagate = False

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    # stderr keeps stdout clean for the CLI's JSON / CSV output
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(formatter)
        root.addHandler(fh)

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under the ``product_mapper`` namespace."""
    return logging.getLogger(f"{_NAMESPACE}.{name}")
