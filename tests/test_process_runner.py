"""ProcessRunner unit tests.

Test coverage:
- Launching and reading stdout/stderr independently
- Stdin detached from the parent
- Process isolation (new session/process group)
- Exit status and signal reporting
- Termination (graceful and forced)
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from pathlib import Path

import pytest

from script_supervisor.runtime.process_runner import (
    IS_WINDOWS,
    ExitStatus,
    ProcessHandle,
    ProcessRunner,
    ProcessSpec,
)
from script_supervisor.stream import Channel

pytestmark = pytest.mark.skipif(IS_WINDOWS, reason="POSIX shell commands")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def temp_workspace(tmp_path: Path) -> Path:
    """Create temporary workspace directory."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


@pytest.fixture
def runner() -> ProcessRunner:
    """Create ProcessRunner instance with short timeouts for testing."""
    return ProcessRunner(term_timeout=0.5, kill_timeout=0.3)


async def read_all(handle: ProcessHandle, channel: Channel) -> bytes:
    chunks = []
    while True:
        chunk = await handle.read(channel)
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)


# =============================================================================
# Basic Execution Tests
# =============================================================================


class TestBasicExecution:
    """Test basic process execution."""

    @pytest.mark.asyncio
    async def test_simple_command(self, runner: ProcessRunner):
        handle = await runner.launch(ProcessSpec(argv=["echo", "hello"]))

        output = await read_all(handle, Channel.STDOUT)
        status = await handle.wait()

        assert output == b"hello\n"
        assert status == ExitStatus(code=0)

    @pytest.mark.asyncio
    async def test_working_directory(self, temp_workspace: Path, runner: ProcessRunner):
        handle = await runner.launch(ProcessSpec(argv=["pwd"], cwd=temp_workspace))

        output = (await read_all(handle, Channel.STDOUT)).decode().strip()
        await handle.wait()

        assert temp_workspace.name in output

    @pytest.mark.asyncio
    async def test_stdout_and_stderr_read_independently(self, runner: ProcessRunner):
        handle = await runner.launch(
            ProcessSpec(argv=["sh", "-c", "echo out; echo err >&2"])
        )

        stdout, stderr = await asyncio.gather(
            read_all(handle, Channel.STDOUT),
            read_all(handle, Channel.STDERR),
        )
        await handle.wait()

        assert stdout == b"out\n"
        assert stderr == b"err\n"

    @pytest.mark.asyncio
    async def test_read_size_bounds_chunks(self):
        runner = ProcessRunner(read_size=4)
        handle = await runner.launch(ProcessSpec(argv=["printf", "abcdefghij"]))

        chunks = []
        while chunk := await handle.read(Channel.STDOUT):
            chunks.append(chunk)
        await handle.wait()

        assert b"".join(chunks) == b"abcdefghij"
        assert all(len(chunk) <= 4 for chunk in chunks)

    @pytest.mark.asyncio
    async def test_custom_environment(self, runner: ProcessRunner):
        env = os.environ.copy()
        env["TEST_VAR"] = "test_value_123"
        handle = await runner.launch(
            ProcessSpec(argv=["sh", "-c", "echo $TEST_VAR"], env=env)
        )

        output = await read_all(handle, Channel.STDOUT)
        await handle.wait()

        assert output.strip() == b"test_value_123"


# =============================================================================
# Stdin Tests
# =============================================================================


class TestStdinHandling:
    """Test stdin handling."""

    @pytest.mark.asyncio
    async def test_stdin_defaults_to_devnull(self, runner: ProcessRunner):
        # cat would block forever on an inherited terminal
        handle = await runner.launch(ProcessSpec(argv=["cat"]))

        output = await asyncio.wait_for(read_all(handle, Channel.STDOUT), timeout=5)
        await handle.wait()

        assert output == b""


# =============================================================================
# Process Isolation Tests
# =============================================================================


class TestProcessIsolation:
    """Test process isolation (new session/process group)."""

    @pytest.mark.asyncio
    async def test_process_group_leader(self, runner: ProcessRunner):
        handle = await runner.launch(
            ProcessSpec(
                argv=[sys.executable, "-c", "import os; print(os.getpid(), os.getpgid(0))"]
            )
        )

        pid, pgid = (await read_all(handle, Channel.STDOUT)).decode().split()
        await handle.wait()

        # Group leader because of start_new_session
        assert pid == pgid
        assert int(pid) == handle.pid


# =============================================================================
# Exit Status Tests
# =============================================================================


class TestExitStatus:
    """Exit code and signal reporting."""

    @pytest.mark.asyncio
    async def test_exit_code_nonzero(self, runner: ProcessRunner):
        handle = await runner.launch(ProcessSpec(argv=["sh", "-c", "exit 3"]))
        status = await handle.wait()

        assert status.code == 3
        assert status.was_signaled is False
        assert status.exit_code == 3

    @pytest.mark.asyncio
    async def test_killed_by_signal(self, runner: ProcessRunner):
        handle = await runner.launch(ProcessSpec(argv=["sh", "-c", "kill -9 $$"]))
        status = await handle.wait()

        assert status.was_signaled is True
        assert status.signal == signal.SIGKILL
        assert status.exit_code == 128 + signal.SIGKILL

    def test_from_returncode(self):
        assert ExitStatus.from_returncode(0) == ExitStatus(code=0)
        assert ExitStatus.from_returncode(-15) == ExitStatus(code=-15, signal=15)
        assert ExitStatus.from_returncode(-15).exit_code == 143

    @pytest.mark.asyncio
    async def test_nonexistent_command(self, runner: ProcessRunner):
        with pytest.raises((FileNotFoundError, OSError)):
            await runner.launch(ProcessSpec(argv=["nonexistent_command_xyz_123"]))


# =============================================================================
# Termination Tests
# =============================================================================


class TestTermination:
    """Test process termination."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_terminate_long_running_process(self, runner: ProcessRunner):
        handle = await runner.launch(ProcessSpec(argv=["sleep", "100"]))
        await asyncio.sleep(0.1)

        await handle.terminate()

        assert handle.returncode is not None
        status = await handle.wait()
        assert status.signal == signal.SIGTERM

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_force_kill_when_sigterm_ignored(self, runner: ProcessRunner):
        handle = await runner.launch(
            ProcessSpec(argv=["sh", "-c", "trap '' TERM; echo ready; sleep 100"])
        )
        assert await handle.read(Channel.STDOUT) == b"ready\n"

        await handle.terminate()

        status = await handle.wait()
        assert status.signal == signal.SIGKILL

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_wait_returns_while_background_child_holds_output(
        self, runner: ProcessRunner
    ):
        handle = await runner.launch(
            ProcessSpec(argv=["sh", "-c", "sleep 30 & echo started"])
        )

        status = await asyncio.wait_for(handle.wait(), timeout=5)

        assert status == ExitStatus(code=0)
        await handle.terminate()

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_terminate_after_exit_kills_leftover_group(self, runner: ProcessRunner):
        handle = await runner.launch(
            ProcessSpec(argv=["sh", "-c", "sleep 30 & echo started"])
        )
        assert await handle.read(Channel.STDOUT) == b"started\n"
        await handle.wait()

        await handle.terminate()

        # The background sleep held stdout; killing it closes the pipe
        rest = await asyncio.wait_for(read_all(handle, Channel.STDOUT), timeout=5)
        assert rest == b""

    @pytest.mark.asyncio
    async def test_terminate_after_exit_is_noop(self, runner: ProcessRunner):
        handle = await runner.launch(ProcessSpec(argv=["true"]))
        await handle.wait()

        await handle.terminate()

        assert handle.returncode == 0


# =============================================================================
# ProcessSpec Tests
# =============================================================================


class TestProcessSpec:
    """Test ProcessSpec dataclass."""

    def test_frozen(self):
        spec = ProcessSpec(argv=["echo", "test"])

        with pytest.raises(AttributeError):
            spec.argv = ["other"]  # type: ignore

    def test_default_values(self):
        spec = ProcessSpec(argv=["echo"])

        assert spec.cwd is None
        assert spec.env is None

    def test_build_kwargs_uses_new_session(self, runner: ProcessRunner):
        kwargs = runner._build_subprocess_kwargs(ProcessSpec(argv=["x"], env={"A": "1"}))

        assert kwargs["env"] == {"A": "1"}
        if sys.platform != "win32":
            assert kwargs["start_new_session"] is True
