"""Process launcher with subprocess isolation and reliable termination.

This module provides:
- Cross-platform subprocess isolation (new session/process group)
- Independent chunked reads from stdout and stderr
- Exit status reporting that distinguishes signals from exit codes
- Reliable termination with graceful shutdown (SIGTERM -> timeout -> SIGKILL)

Key design points:
- POSIX: start_new_session=True to create new process group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
- Termination targets the process group, not just the main process
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..config import DEFAULT_KILL_TIMEOUT, DEFAULT_READ_SIZE, DEFAULT_TERM_TIMEOUT
from ..stream import Channel

__all__ = [
    "ExitStatus",
    "ProcessHandle",
    "ProcessRunner",
    "ProcessSpec",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Seconds between exit checks in ProcessHandle.wait()
EXIT_POLL_INTERVAL = 0.02


@dataclass(frozen=True)
class ProcessSpec:
    """Specification for a subprocess to run.

    Attributes:
        argv: Command line arguments (first element is the executable)
        cwd: Working directory for the process (None = inherit)
        env: Environment variables (None = inherit parent)
    """

    argv: list[str]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None


@dataclass(frozen=True)
class ExitStatus:
    """How a process ended.

    Attributes:
        code: Raw return code (negative signal number on POSIX when killed)
        signal: Terminating signal number, None for a normal exit
    """

    code: int
    signal: int | None = None

    @classmethod
    def from_returncode(cls, returncode: int) -> "ExitStatus":
        if returncode < 0:
            return cls(code=returncode, signal=-returncode)
        return cls(code=returncode)

    @property
    def was_signaled(self) -> bool:
        return self.signal is not None

    @property
    def exit_code(self) -> int:
        """Shell style status: 128 + signum for signalled exits."""
        if self.signal is not None:
            return 128 + self.signal
        return self.code


class ProcessHandle:
    """A launched subprocess.

    Reads on the two channels are independent and may run concurrently.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        *,
        term_timeout: float = DEFAULT_TERM_TIMEOUT,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
        read_size: int = DEFAULT_READ_SIZE,
    ) -> None:
        self._process = process
        self.term_timeout = term_timeout
        self.kill_timeout = kill_timeout
        self.read_size = read_size

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    async def read(self, channel: Channel) -> bytes:
        """Read the next available chunk from a channel.

        Args:
            channel: STDOUT or STDERR

        Returns:
            Up to read_size bytes; b"" once the channel reached end-of-stream
        """
        reader = (
            self._process.stdout if channel is Channel.STDOUT else self._process.stderr
        )
        if reader is None:
            return b""
        return await reader.read(self.read_size)

    async def wait(self) -> ExitStatus:
        """Wait for the process to exit.

        Returns once the child was reaped, even while background
        processes it started still hold stdout/stderr open.
        Process.wait() may block until those pipes close, so the
        return code is polled instead.
        """
        while self._process.returncode is None:
            await asyncio.sleep(EXIT_POLL_INTERVAL)
        return ExitStatus.from_returncode(self._process.returncode)

    async def terminate(self) -> None:
        """Terminate subprocess gracefully, then forcefully if needed.

        Termination strategy:
        1. Send SIGTERM (or CTRL_BREAK_EVENT on Windows)
        2. Wait up to term_timeout for graceful exit
        3. If still running, send SIGKILL (or kill() on Windows)
        4. Wait up to kill_timeout for forced exit

        Once the child itself has exited, only background members of
        its process group can be left; those are killed outright.
        """
        process = self._process
        if process.returncode is not None:
            self._kill_leftovers()
            return

        pid = process.pid
        logger.debug(f"Terminating subprocess pid={pid}")

        try:
            # Step 1: Graceful termination
            if IS_WINDOWS:
                await self._windows_terminate()
            else:
                await self._posix_terminate()

            # Step 2: Wait for graceful exit
            try:
                await asyncio.wait_for(self.wait(), timeout=self.term_timeout)
                logger.debug(
                    f"Subprocess terminated gracefully pid={pid} "
                    f"returncode={process.returncode}"
                )
                return
            except asyncio.TimeoutError:
                pass

            # Step 3: Force kill
            logger.debug(f"Force killing subprocess pid={pid}")
            if IS_WINDOWS:
                await self._windows_kill()
            else:
                await self._posix_kill()

            # Step 4: Wait for forced exit
            try:
                await asyncio.wait_for(self.wait(), timeout=self.kill_timeout)
                logger.debug(
                    f"Subprocess killed pid={pid} "
                    f"returncode={process.returncode}"
                )
            except asyncio.TimeoutError:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")

        except ProcessLookupError:
            # Process already exited
            logger.debug(f"Subprocess already exited pid={pid}")
        except Exception as e:
            logger.warning(f"Error terminating subprocess pid={pid}: {e}")

    async def _posix_terminate(self) -> None:
        """Send SIGTERM to the process group on POSIX systems."""
        try:
            # Process group ID equals pid due to start_new_session
            pgid = os.getpgid(self._process.pid)
            os.killpg(pgid, signal.SIGTERM)
            logger.debug(f"Sent SIGTERM to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            # Fallback to terminating just the process
            logger.debug(f"killpg failed, falling back to terminate: {e}")
            self._process.terminate()

    async def _posix_kill(self) -> None:
        """Send SIGKILL to the process group on POSIX systems."""
        try:
            pgid = os.getpgid(self._process.pid)
            os.killpg(pgid, signal.SIGKILL)
            logger.debug(f"Sent SIGKILL to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to kill: {e}")
            self._process.kill()

    def _kill_leftovers(self) -> None:
        """SIGKILL what is left of the process group after the child exited."""
        if IS_WINDOWS:
            return
        pgid = self._process.pid
        try:
            # The leader is reaped, so getpgid() no longer works; the group
            # keeps its id while any member is alive
            os.killpg(pgid, signal.SIGKILL)
            logger.debug(f"Killed leftover processes of group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg on leftover group failed pgid={pgid}: {e}")

    async def _windows_terminate(self) -> None:
        """Send CTRL_BREAK_EVENT on Windows."""
        try:
            # Works because of CREATE_NEW_PROCESS_GROUP
            os.kill(self._process.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={self._process.pid}")
        except (ProcessLookupError, OSError) as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            self._process.terminate()

    async def _windows_kill(self) -> None:
        """Force kill on Windows."""
        try:
            self._process.kill()
            logger.debug(f"Called kill() on pid={self._process.pid}")
        except ProcessLookupError:
            pass


@dataclass
class ProcessRunner:
    """Cross-platform process launcher with isolation.

    Example:
        runner = ProcessRunner()
        handle = await runner.launch(ProcessSpec(argv=["./plugin.sh", "--flag"]))

        chunk = await handle.read(Channel.STDOUT)
        status = await handle.wait()
    """

    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    read_size: int = DEFAULT_READ_SIZE

    async def launch(self, spec: ProcessSpec) -> ProcessHandle:
        """Start the subprocess in an isolated process group/session.

        Args:
            spec: Process specification

        Returns:
            Handle for reading output and terminating the process

        Raises:
            FileNotFoundError: The executable does not exist
            PermissionError: The executable is not runnable
            OSError: Any other spawn failure
        """
        kwargs = self._build_subprocess_kwargs(spec)

        # DEVNULL instead of None: stdin=None would inherit the parent's stdin
        process = await asyncio.create_subprocess_exec(
            *spec.argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=spec.cwd,
            **kwargs,
        )

        logger.debug(
            f"Started subprocess pid={process.pid} "
            f"argv={spec.argv[0]} cwd={spec.cwd}"
        )

        return ProcessHandle(
            process,
            term_timeout=self.term_timeout,
            kill_timeout=self.kill_timeout,
            read_size=self.read_size,
        )

    def _build_subprocess_kwargs(self, spec: ProcessSpec) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs."""
        kwargs: dict[str, Any] = {}

        if spec.env is not None:
            kwargs["env"] = dict(spec.env)

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            # POSIX: start_new_session (equivalent to setsid)
            kwargs["start_new_session"] = True

        return kwargs
