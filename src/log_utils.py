"""
Logging utilities for the IBU loop harness.
"""

import logging
import sys
from typing import Optional

from models import LoopCounters


def setup_logging(
    verbose: bool = False, log_file: Optional[str] = "ibu-loops.log"
) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        verbose: Enable verbose (DEBUG) logging
        log_file: Path to log file, or None to log to stdout only

    Returns:
        Logger instance
    """
    level = logging.DEBUG if verbose else logging.INFO

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )

    # The kubernetes client logs every request at DEBUG
    logging.getLogger("kubernetes").setLevel(logging.INFO)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    return logging.getLogger(__name__)


class PassLogger(logging.LoggerAdapter):
    """Prefixes messages with the current loop pass number."""

    def __init__(self, logger: logging.Logger, counters: LoopCounters):
        super().__init__(logger, {})
        self.counters = counters

    def process(self, msg, kwargs):
        return f"Pass {self.counters.iterations}: {msg}", kwargs
