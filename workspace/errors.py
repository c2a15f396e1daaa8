"""Error taxonomy for the workspace engine.

Propagation:
- ValidationError / NotFoundError / PersistenceError reach the caller.
- SyncError stays inside RuntimeMirror (logged, never raised to callers).
- ExecutionError reaches the caller and is echoed to the output sink.
"""


class WorkspaceError(Exception):
    """Base class for all workspace errors."""


class ValidationError(WorkspaceError):
    """Bad name, bad parent, or an illegal structural change."""


class NotFoundError(WorkspaceError):
    """Unknown node id."""


class PersistenceError(WorkspaceError):
    """Durable store I/O failure."""


class SyncError(WorkspaceError):
    """Runtime mirror failure. Always non-fatal."""


class ExecutionError(WorkspaceError):
    """Spawn or runtime failure while executing a file."""


class ExecutionCancelledError(ExecutionError):
    """Execution was cancelled and the sandboxed process terminated."""


class TimedOutError(WorkspaceError):
    """A request over the store channel got no response in time."""


ERROR_KINDS: dict[str, type[WorkspaceError]] = {
    cls.__name__: cls
    for cls in (
        ValidationError,
        NotFoundError,
        PersistenceError,
        SyncError,
        ExecutionError,
        ExecutionCancelledError,
        TimedOutError,
    )
}
