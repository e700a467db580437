"""
Pytest configuration for tds_lattice tests.

Puts ``src/`` on sys.path so the package imports without installation, and
routes the process-wide Logger to a per-test temporary file.
"""

import os
import sys

import pytest

_src_root = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src")
if _src_root not in sys.path:
    sys.path.insert(0, _src_root)

from tds_lattice.utils.logger import LocalFileStrategy, Logger  # noqa: E402


@pytest.fixture(autouse=True)
def log_file(tmp_path):
    """Fresh log file per test; returns the strategy for assertions."""
    Logger.set_log_storage_strategy(None)
    Logger.enable_logging()
    Logger.set_minimum_priority(Logger.LogPriority.DEBUG)
    strategy = LocalFileStrategy(tmp_path / "test_log.txt")
    Logger.set_log_storage_strategy(strategy)
    yield strategy
    Logger.set_log_storage_strategy(None)
