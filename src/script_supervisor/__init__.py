"""Script Supervisor - piece-by-piece supervision of external scripts.

Runs an external executable, splits its stdout/stderr into
delimiter-bounded pieces as the output arrives and reports exactly one
outcome per run (success, manual termination, syntax error, generic
failure or launch error) to a delegate.

Environment variables:
    SCRIPT_TERM_TIMEOUT: graceful stop timeout (default 2.0)
    SCRIPT_KILL_TIMEOUT: forced kill timeout (default 1.0)
    SCRIPT_LOG_DEBUG: debug logging to a temp file (default false)

Usage:
    delegate = RecordingDelegate()
    supervisor = ProcessSupervisor("./plugin.sh", delegate=delegate, delimiter="~~~")
    await supervisor.start()
    outcome = await supervisor.wait()
"""

__version__ = "0.1.0"

from .buffer import DelimiterBuffer
from .config import Config, get_config, load_config, reload_config, setup_logging
from .delegate import CallbackDelegate, Delegate, RecordingDelegate
from .outcome import (
    Failure,
    GenericFailure,
    LaunchFailure,
    ManualTermination,
    Outcome,
    OutcomeKind,
    Success,
    SyntaxClassifier,
    SyntaxFailure,
    classify_exit,
    default_syntax_classifier,
    describe,
    misuse_classifier,
)
from .stream import Channel, Piece, PieceStream
from .supervisor import ProcessSupervisor, SupervisorState

__all__ = [
    "__version__",
    # Buffering
    "DelimiterBuffer",
    "Channel",
    "Piece",
    "PieceStream",
    # Supervision
    "ProcessSupervisor",
    "SupervisorState",
    "Delegate",
    "RecordingDelegate",
    "CallbackDelegate",
    # Outcomes
    "Outcome",
    "OutcomeKind",
    "Success",
    "Failure",
    "ManualTermination",
    "SyntaxFailure",
    "GenericFailure",
    "LaunchFailure",
    "SyntaxClassifier",
    "classify_exit",
    "default_syntax_classifier",
    "describe",
    "misuse_classifier",
    # Configuration
    "Config",
    "get_config",
    "load_config",
    "reload_config",
    "setup_logging",
]
