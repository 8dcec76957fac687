"""Terminal outcomes of a supervised run.

Every run ends in exactly one outcome value, handed to the delegate
instead of being raised:

- Success: exit status 0
- ManualTermination: stopped through stop() or restart()
- SyntaxFailure: non-zero exit recognised as a usage/parse error
- GenericFailure: any other non-zero exit or foreign signal
- LaunchFailure: the executable could not be spawned at all
"""

from __future__ import annotations

import signal
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Union

__all__ = [
    "OutcomeKind",
    "Success",
    "Failure",
    "ManualTermination",
    "SyntaxFailure",
    "GenericFailure",
    "LaunchFailure",
    "Outcome",
    "SyntaxClassifier",
    "default_syntax_classifier",
    "misuse_classifier",
    "classify_exit",
    "describe",
]

# Shell status for "misuse of shell builtins", used by sh/bash for syntax errors
MISUSE_EXIT_CODE = 2


class OutcomeKind(str, Enum):
    """Outcome categories.

    - SUCCESS: exited with status 0
    - MANUAL_TERMINATION: stopped on request, not a failure of the process
    - SYNTAX_ERROR: exited abnormally with a usage/parse diagnostic on stderr
    - GENERIC: exited non-zero (or was killed) without a recognised signature
    - LAUNCH_ERROR: never started
    """

    SUCCESS = "success"
    MANUAL_TERMINATION = "manual_termination"
    SYNTAX_ERROR = "syntax_error"
    GENERIC = "generic"
    LAUNCH_ERROR = "launch_error"


@dataclass(frozen=True)
class Success:
    """Run exited with status 0.

    Attributes:
        output: Complete decoded stdout of the run
    """

    output: str = ""

    kind = OutcomeKind.SUCCESS
    succeeded = True

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "output": self.output}


@dataclass(frozen=True)
class Failure:
    """Base class of the failure outcomes."""

    kind = OutcomeKind.GENERIC
    succeeded = False

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"kind": self.kind.value}
        result.update(self.__dict__)
        return result


@dataclass(frozen=True)
class ManualTermination(Failure):
    """Run was stopped by an explicit stop() or restart()."""

    kind = OutcomeKind.MANUAL_TERMINATION


@dataclass(frozen=True)
class SyntaxFailure(Failure):
    """Run exited abnormally with a usage/parse diagnostic.

    Attributes:
        stderr: Captured stderr text
        exit_code: Process exit status
    """

    stderr: str = ""
    exit_code: int = 0

    kind = OutcomeKind.SYNTAX_ERROR


@dataclass(frozen=True)
class GenericFailure(Failure):
    """Run exited non-zero without a recognised syntax signature.

    Attributes:
        output: Captured stdout text
        exit_code: Process exit status (128 + signum when killed by a signal)
        stderr: Captured stderr text
    """

    output: str = ""
    exit_code: int = 0
    stderr: str = ""

    kind = OutcomeKind.GENERIC


@dataclass(frozen=True)
class LaunchFailure(Failure):
    """The executable could not be started.

    Attributes:
        path: Executable that was requested
        reason: OS error message
    """

    path: str = ""
    reason: str = ""

    kind = OutcomeKind.LAUNCH_ERROR


Outcome = Union[Success, Failure]

# (exit_code, stderr_text) -> True when the failure is a syntax/usage error
SyntaxClassifier = Callable[[int, str], bool]


def default_syntax_classifier(exit_code: int, stderr: str) -> bool:
    """Non-zero exit plus non-empty stderr counts as a syntax error."""
    return exit_code != 0 and bool(stderr.strip())


def misuse_classifier(exit_code: int, stderr: str) -> bool:
    """Stricter classifier: only the shell misuse status (2) with stderr."""
    return exit_code == MISUSE_EXIT_CODE and bool(stderr.strip())


def classify_exit(
    exit_code: int,
    stdout: str,
    stderr: str,
    *,
    signum: int | None = None,
    syntax_classifier: SyntaxClassifier = default_syntax_classifier,
) -> Outcome:
    """Classify a natural process exit.

    Manual termination is decided by the supervisor before this is
    called; here a signal always means somebody else killed the process.

    Args:
        exit_code: Exit status (already 128 + signum for signalled exits)
        stdout: Complete decoded stdout
        stderr: Captured stderr
        signum: Terminating signal, if any
        syntax_classifier: Decides SyntaxFailure vs GenericFailure

    Returns:
        The run's outcome
    """
    if signum is not None:
        return GenericFailure(output=stdout, exit_code=exit_code, stderr=stderr)

    if exit_code == 0:
        return Success(output=stdout)

    if syntax_classifier(exit_code, stderr):
        return SyntaxFailure(stderr=stderr, exit_code=exit_code)

    return GenericFailure(output=stdout, exit_code=exit_code, stderr=stderr)


def describe(outcome: Outcome) -> str:
    """Short human readable description, used in log lines."""
    if isinstance(outcome, Success):
        return f"success ({len(outcome.output)} chars)"
    if isinstance(outcome, SyntaxFailure):
        return f"syntax error (exit {outcome.exit_code})"
    if isinstance(outcome, GenericFailure):
        if outcome.exit_code > 128:
            try:
                name = signal.Signals(outcome.exit_code - 128).name
                return f"failure (exit {outcome.exit_code}, {name})"
            except ValueError:
                pass
        return f"failure (exit {outcome.exit_code})"
    if isinstance(outcome, LaunchFailure):
        return f"launch error ({outcome.reason})"
    return outcome.kind.value.replace("_", " ")
