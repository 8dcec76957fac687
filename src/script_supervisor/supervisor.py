"""Process supervisor.

Drives the Idle -> Running -> Stopped lifecycle of one external
script, turns its output into piece events and reports exactly one
outcome per run.

Key design points:
- Each run owns its PieceStream, capture buffers and process handle;
  restart() builds a fresh run, nothing leaks across runs
- stdout and stderr are drained concurrently in an anyio task group;
  the outcome is classified only after reading stopped and the exit
  status is known, so no piece can follow the outcome
- Reading stops at end-of-stream, or drain_timeout seconds after the
  exit when background processes left by the script hold the pipes;
  those leftovers are killed
- start/stop/restart are serialised by an asyncio.Lock
- stop() marks the run before terminating it; whichever of "stop
  requested" and "exit observed" happens first decides the outcome
"""

from __future__ import annotations

import asyncio
import codecs
import functools
import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import anyio

from .config import Config, get_config
from .delegate import Delegate
from .outcome import (
    GenericFailure,
    LaunchFailure,
    ManualTermination,
    Outcome,
    SyntaxClassifier,
    classify_exit,
    default_syntax_classifier,
    describe,
)
from .runtime.process_runner import ProcessHandle, ProcessRunner, ProcessSpec
from .stream import Channel, PieceStream

__all__ = ["ProcessSupervisor", "SupervisorState"]

logger = logging.getLogger(__name__)


class SupervisorState(str, Enum):
    """Lifecycle state of the supervised process."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class _Run:
    """Per-run state. A new instance is created for every start/restart.

    Attributes:
        number: 1-based run counter
        pieces: Delimiter buffers for this run
        handle: Launched process (None until launched, or if launch failed)
        stdout_parts: Decoded stdout, kept whole for the Success payload
        stderr_chunks: Raw stderr, bounded, for classification
        stderr_trimmed: Oldest stderr chunks were dropped
        stop_requested: Set by stop()/restart() before terminating
        outcome: Terminal outcome, assigned at most once
        done: Set once the outcome was delivered
    """

    number: int
    pieces: PieceStream
    handle: ProcessHandle | None = None
    stdout_parts: list[str] = field(default_factory=list)
    stderr_chunks: list[bytes] = field(default_factory=list)
    stderr_size: int = 0
    stderr_trimmed: bool = False
    stop_requested: bool = False
    outcome: Outcome | None = None
    done: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task[None] | None = None


def _skip_partial_character(data: bytes, encoding: str) -> bytes:
    """Drop leading bytes that continue a character cut off by trimming."""
    for skip in range(min(4, len(data))):
        decoder = codecs.getincrementaldecoder(encoding)()
        try:
            decoder.decode(data[skip : skip + 16])
        except UnicodeDecodeError:
            continue
        return data[skip:]
    return data


class ProcessSupervisor:
    """Supervises an external script and reports its output piece by piece.

    Example:
        delegate = RecordingDelegate()
        supervisor = ProcessSupervisor(
            "./plugin.sh",
            ["--refresh"],
            delegate=delegate,
            delimiter="~~~",
        )
        await supervisor.start()
        outcome = await supervisor.wait()

        # or, stopping on exit:
        async with ProcessSupervisor("./plugin.sh", delegate=delegate) as supervisor:
            await supervisor.wait()

    Attributes:
        path: Executable location
        args: Arguments passed after the executable
        delegate: Receives pieces and outcomes (None = outcomes only kept)
        delimiter: Piece boundary marker ("" = no segmentation)
        env: Extra environment variables layered over os.environ
        cwd: Working directory (None = inherit)
    """

    def __init__(
        self,
        path: str | Path,
        args: Sequence[str] = (),
        delegate: Delegate | None = None,
        *,
        autostart: bool = False,
        delimiter: str = "",
        env: Mapping[str, str] | None = None,
        cwd: str | Path | None = None,
        syntax_classifier: SyntaxClassifier = default_syntax_classifier,
        runner: Any | None = None,
        config: Config | None = None,
    ) -> None:
        """Create the supervisor.

        Args:
            path: Executable location
            args: Ordered argument list
            delegate: Piece/outcome sink
            autostart: Schedule start() immediately (needs a running loop)
            delimiter: Piece boundary marker, "" disables segmentation
            env: Extra environment variables for the child
            cwd: Working directory for the child
            syntax_classifier: (exit_code, stderr) -> is syntax error
            runner: Object with `async launch(spec) -> handle`
                (default: ProcessRunner built from config)
            config: Settings (default: environment config)

        Raises:
            RuntimeError: autostart requested outside a running event loop
        """
        self.path = str(path)
        self.args = list(args)
        self.delegate = delegate
        self.delimiter = delimiter
        self.env = dict(env) if env is not None else None
        self.cwd = Path(cwd) if cwd is not None else None
        self.syntax_classifier = syntax_classifier

        self._config = config or get_config()
        self._runner = runner or ProcessRunner(
            term_timeout=self._config.term_timeout,
            kill_timeout=self._config.kill_timeout,
            read_size=self._config.read_size,
        )

        self._state = SupervisorState.IDLE
        self._run: _Run | None = None
        self._run_count = 0
        self._lock = asyncio.Lock()
        self._autostart_task: asyncio.Task[None] | None = None

        if autostart:
            loop = asyncio.get_running_loop()
            self._autostart_task = loop.create_task(self.start())

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SupervisorState.RUNNING

    @property
    def outcome(self) -> Outcome | None:
        """Outcome of the current run, None while running or before start."""
        return self._run.outcome if self._run else None

    @property
    def pid(self) -> int | None:
        if self._run and self._run.handle:
            return self._run.handle.pid
        return None

    @property
    def run_count(self) -> int:
        """Number of runs begun so far."""
        return self._run_count

    def pending(self, channel: Channel) -> str:
        """Pending tail of a channel in the current run."""
        return self._run.pieces.pending(channel) if self._run else ""

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the process. No-op unless the supervisor is Idle."""
        async with self._lock:
            if self._state is not SupervisorState.IDLE:
                logger.debug(f"start() ignored in state {self._state.value}")
                return
            await self._begin_run()

    async def stop(self) -> None:
        """Stop the running process.

        The run ends with ManualTermination unless its exit was already
        observed. Returns once the outcome was delivered. No-op when not
        running.
        """
        async with self._lock:
            run = self._run
            if self._state is not SupervisorState.RUNNING or run is None:
                logger.debug(f"stop() ignored in state {self._state.value}")
                return
            await self._terminate_run(run)

    async def restart(self) -> None:
        """Terminate any live run and begin a fresh one."""
        async with self._lock:
            run = self._run
            if run is not None and run.outcome is None:
                await self._terminate_run(run)
            logger.info(f"Restarting {self.path}")
            await self._begin_run()

    async def wait(self) -> Outcome:
        """Wait for the outcome of the current run.

        Raises:
            RuntimeError: The supervisor was never started
        """
        if self._autostart_task is not None:
            await self._autostart_task
        run = self._run
        if run is None:
            raise RuntimeError("supervisor has not been started")
        await run.done.wait()
        if run.outcome is None:
            raise RuntimeError(f"run {run.number} finished without an outcome")
        return run.outcome

    async def __aenter__(self) -> "ProcessSupervisor":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    # =========================================================================
    # Run management
    # =========================================================================

    async def _begin_run(self) -> None:
        """Create a fresh run and launch the process. Caller holds the lock."""
        self._run_count += 1
        run = _Run(
            number=self._run_count,
            pieces=PieceStream(
                self.delimiter, functools.partial(self._deliver_piece, self._run_count)
            ),
        )
        self._run = run
        self._state = SupervisorState.RUNNING

        spec = ProcessSpec(
            argv=[self.path, *self.args],
            cwd=self.cwd,
            env={**os.environ, **self.env} if self.env is not None else None,
        )

        try:
            handle = await self._runner.launch(spec)
        except OSError as e:
            logger.warning(f"Failed to launch {self.path}: {e}")
            self._finish(run, LaunchFailure(path=self.path, reason=e.strerror or str(e)))
            return

        run.handle = handle
        logger.info(
            f"Started {self.path} run={run.number} pid={handle.pid} "
            f"delimiter={self.delimiter!r}"
        )
        run.task = asyncio.create_task(
            self._supervise(run, handle), name=f"supervise-{run.number}"
        )

    async def _terminate_run(self, run: _Run) -> None:
        """Request termination of a live run and wait for its outcome."""
        handle = run.handle
        if run.outcome is None and handle is not None:
            if handle.returncode is None:
                run.stop_requested = True
                logger.info(f"Stopping {self.path} run={run.number}")
            else:
                # Exit already observed: the run keeps its natural outcome
                logger.info(
                    f"{self.path} run={run.number} already exited, "
                    f"closing its remaining output"
                )
            await handle.terminate()
        await run.done.wait()

    async def _supervise(self, run: _Run, handle: ProcessHandle) -> None:
        """Drain both channels, wait for exit and classify the run."""
        drained = anyio.Event()

        try:
            async with anyio.create_task_group() as tg:
                tg.start_soon(self._drain, run, handle, drained)
                status = await handle.wait()

                with anyio.move_on_after(self._config.drain_timeout):
                    await drained.wait()
                if not drained.is_set():
                    logger.warning(
                        f"{self.path} run={run.number} output still open "
                        f"{self._config.drain_timeout}s after exit, "
                        f"killing leftover processes"
                    )
                    await handle.terminate()
                    with anyio.move_on_after(self._config.kill_timeout):
                        await drained.wait()
                    tg.cancel_scope.cancel()
        except asyncio.CancelledError:
            # Shield cleanup so the child does not outlive a cancelled supervisor
            await asyncio.shield(handle.terminate())
            run.stop_requested = True
            self._finish(run, ManualTermination())
            raise
        except Exception as e:
            logger.error(f"Supervising {self.path} run={run.number} failed: {e}")
            await asyncio.shield(handle.terminate())
            self._finish(
                run,
                GenericFailure(
                    output="".join(run.stdout_parts),
                    exit_code=handle.returncode if handle.returncode is not None else -1,
                    stderr=self._captured_stderr(run) or str(e),
                ),
            )
            return

        if run.stop_requested:
            outcome: Outcome = ManualTermination()
        else:
            outcome = classify_exit(
                status.exit_code,
                "".join(run.stdout_parts),
                self._captured_stderr(run),
                signum=status.signal,
                syntax_classifier=self.syntax_classifier,
            )
        logger.debug(
            f"{self.path} run={run.number} exited code={status.code} "
            f"signal={status.signal} stop_requested={run.stop_requested}"
        )
        self._finish(run, outcome)

    async def _drain(self, run: _Run, handle: ProcessHandle, drained: anyio.Event) -> None:
        async with anyio.create_task_group() as tg:
            tg.start_soon(self._pump, run, handle, Channel.STDOUT)
            tg.start_soon(self._pump, run, handle, Channel.STDERR)
        drained.set()

    async def _pump(self, run: _Run, handle: ProcessHandle, channel: Channel) -> None:
        """Read one channel until end-of-stream, feeding the run's pieces."""
        decoder = codecs.getincrementaldecoder(self._config.encoding)(errors="replace")

        while True:
            chunk = await handle.read(channel)
            if not chunk:
                tail = decoder.decode(b"", final=True)
                if tail:
                    self._ingest(run, channel, tail)
                break

            if channel is Channel.STDERR:
                self._capture_stderr(run, chunk)

            text = decoder.decode(chunk)
            if text:
                self._ingest(run, channel, text)

        logger.debug(f"{self.path} run={run.number} {channel.value} closed")

    def _ingest(self, run: _Run, channel: Channel, text: str) -> None:
        if channel is Channel.STDOUT:
            run.stdout_parts.append(text)
        run.pieces.feed(channel, text)

    def _capture_stderr(self, run: _Run, chunk: bytes) -> None:
        """Keep stderr for classification, dropping the oldest data past the limit."""
        run.stderr_chunks.append(chunk)
        run.stderr_size += len(chunk)
        limit = self._config.max_stderr_bytes
        while run.stderr_size > limit and len(run.stderr_chunks) > 1:
            removed = run.stderr_chunks.pop(0)
            run.stderr_size -= len(removed)
            run.stderr_trimmed = True

    def _captured_stderr(self, run: _Run) -> str:
        data = b"".join(run.stderr_chunks)
        if run.stderr_trimmed:
            data = _skip_partial_character(data, self._config.encoding)
        return data.decode(self._config.encoding, errors="replace")

    # =========================================================================
    # Delegate notification
    # =========================================================================

    def _deliver_piece(self, run_number: int, channel: Channel, text: str) -> None:
        run = self._run
        # Pieces of a stopped, finished or superseded run are not reported
        if run is None or run.number != run_number:
            return
        if run.stop_requested or run.outcome is not None:
            return
        if self.delegate is None:
            return
        try:
            self.delegate.on_piece(channel, text)
        except Exception as e:
            logger.warning(f"Error in delegate on_piece: {e}")

    def _finish(self, run: _Run, outcome: Outcome) -> None:
        """Assign the run's outcome once and notify the delegate."""
        if run.outcome is not None:
            return
        run.outcome = outcome
        if run is self._run:
            self._state = SupervisorState.STOPPED

        logger.info(f"{self.path} run={run.number} finished: {describe(outcome)}")

        if self.delegate is not None:
            try:
                self.delegate.on_outcome(outcome)
            except Exception as e:
                logger.warning(f"Error in delegate on_outcome: {e}")
        run.done.set()

    def __repr__(self) -> str:
        return (
            f"ProcessSupervisor(path={self.path!r}, "
            f"state={self._state.value}, "
            f"runs={self._run_count})"
        )
