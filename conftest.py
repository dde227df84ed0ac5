"""
Pytest configuration.

The harness modules live flat under src/ and import each other by bare
module name, so src/ has to be importable before the tests are collected.
"""

import os
import sys

SRC_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "src")

if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)
