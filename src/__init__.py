"""
Image Based Upgrade loop harness.
"""

from clients import ClusterClient
from config import LoopConfig
from log_utils import setup_logging
from loop import LoopController
from models import RunState, StatisticsAccumulator
from summary import SummaryReporter, format_summary

__all__ = [
    "ClusterClient",
    "LoopConfig",
    "setup_logging",
    "LoopController",
    "RunState",
    "StatisticsAccumulator",
    "SummaryReporter",
    "format_summary",
]
