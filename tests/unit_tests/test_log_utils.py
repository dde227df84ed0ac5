"""
Unit tests for logging utilities.
"""

import logging
import unittest
from unittest.mock import patch

from log_utils import PassLogger, setup_logging
from models import LoopCounters


class TestLogUtils(unittest.TestCase):
    """Test logging utilities."""

    def test_setup_logging_default(self):
        """Test stdout-only logging setup."""
        logger = setup_logging(log_file=None)
        self.assertIsInstance(logger, logging.Logger)

    @patch("log_utils.logging.basicConfig")
    @patch("log_utils.logging.FileHandler")
    def test_setup_logging_verbose(self, mock_handler, mock_basic_config):
        """Test verbose logging setup with a log file."""
        logger = setup_logging(verbose=True, log_file="ibu-loops.log")
        self.assertIsInstance(logger, logging.Logger)
        mock_handler.assert_called_once_with("ibu-loops.log")

        _, kwargs = mock_basic_config.call_args
        self.assertEqual(kwargs["level"], logging.DEBUG)
        self.assertEqual(len(kwargs["handlers"]), 2)


class TestPassLogger(unittest.TestCase):
    """Test the pass counter prefix."""

    def test_prefix_follows_counter(self):
        counters = LoopCounters()
        adapter = PassLogger(logging.getLogger("test.pass"), counters)

        counters.iterations = 3
        msg, _ = adapter.process("Triggering upgrade", {})
        self.assertEqual(msg, "Pass 3: Triggering upgrade")

        counters.iterations = 4
        msg, _ = adapter.process("Triggering rollback", {})
        self.assertEqual(msg, "Pass 4: Triggering rollback")

    def test_emits_through_logger(self):
        counters = LoopCounters(iterations=2)
        adapter = PassLogger(logging.getLogger("test.pass.emit"), counters)
        with self.assertLogs("test.pass.emit", level="INFO") as captured:
            adapter.info("Waiting for upgrade to finish")
        self.assertIn("Pass 2: Waiting for upgrade to finish", captured.output[0])


if __name__ == "__main__":
    unittest.main()
