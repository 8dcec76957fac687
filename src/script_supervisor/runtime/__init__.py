"""Runtime module for subprocess management.

This module provides isolated process launching with proper signal
handling and reliable termination for supervised scripts.
"""

from __future__ import annotations

from .process_runner import ExitStatus, ProcessHandle, ProcessRunner, ProcessSpec

__all__ = [
    "ExitStatus",
    "ProcessHandle",
    "ProcessRunner",
    "ProcessSpec",
]
