#!/usr/bin/env python3
"""
Image Based Upgrade loop harness.

Repeatedly upgrades and rolls back a single-node OpenShift cluster through
the ImageBasedUpgrade resource until an upgrade fails, and prints timing
statistics on exit.

This script supports running directly from a source checkout. It adds the
local `src/` directory to sys.path before importing the CLI. For regular
use, prefer installing the project and running the `ibu-loops` console
script.
"""

import os
import sys

# Add src/ to path to import modules directly
REPO_ROOT = os.path.dirname(os.path.abspath(__file__))
SRC_PATH = os.path.join(REPO_ROOT, "src")
if SRC_PATH not in sys.path:
    sys.path.insert(0, SRC_PATH)

from cli import main

if __name__ == "__main__":
    sys.exit(main())
