"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src directory to the Python path
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from script_supervisor.config import Config  # noqa: E402
from script_supervisor.delegate import RecordingDelegate  # noqa: E402

FIXTURES_DIR = PROJECT_ROOT / "tests" / "fixtures"
FAKE_SCRIPT_PATH = FIXTURES_DIR / "fake_script.py"


@pytest.fixture
def fake_script() -> Path:
    """Path of the fake script fixture."""
    return FAKE_SCRIPT_PATH


@pytest.fixture
def python_exe() -> str:
    """Interpreter used to run the fake script."""
    return sys.executable


@pytest.fixture
def fast_config() -> Config:
    """Config with short termination timeouts."""
    return Config(term_timeout=0.5, kill_timeout=0.3, read_size=4096)


@pytest.fixture
def delegate() -> RecordingDelegate:
    """Delegate recording pieces and outcomes."""
    return RecordingDelegate()
