"""
Core Exceptions - Unified error hierarchy for histdb.

Each exception type covers one category of failure. Client-visible
failures are turned into response statuses by the daemon; only
storage write failures are fatal.
"""


class HistdbError(Exception):
    """Base exception for all histdb errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | {self.details}"
        return self.message


# =============================================================================
# Validation Errors
# =============================================================================

class ValidationError(HistdbError):
    """Input validation failed."""
    pass


class InvalidTimestampError(ValidationError):
    """A finish event is timestamped before its start event."""

    def __init__(self, session_id: str, time_start: str, time_finished: str):
        super().__init__(
            f"Command for session '{session_id}' finished before it started",
            {"session_id": session_id, "time_start": time_start, "time_finished": time_finished},
        )
        self.session_id = session_id


class ConfigError(ValidationError):
    """Configuration file could not be read or is invalid."""
    pass


# =============================================================================
# Lookup Errors
# =============================================================================

class NotFoundError(HistdbError):
    """A requested record does not exist."""
    pass


class HostNotFoundError(NotFoundError):
    """No history log exists for the hostname."""

    def __init__(self, hostname: str):
        super().__init__(
            f"No history for host '{hostname}'",
            {"hostname": hostname}
        )
        self.hostname = hostname


class RunningCommandNotFoundError(NotFoundError):
    """No running command is registered for the session."""

    def __init__(self, session_id: str):
        super().__init__(
            f"No running command for session '{session_id}'",
            {"session_id": session_id}
        )
        self.session_id = session_id


# =============================================================================
# Storage Errors
# =============================================================================

class StorageError(HistdbError):
    """Reading or writing a host log or the registry failed.

    Fatal to the daemon when raised while writing.
    """

    def __init__(self, operation: str, reason: str, details: dict | None = None):
        super().__init__(
            f"Storage error during {operation}: {reason}",
            {**(details or {}), "operation": operation, "reason": reason}
        )
        self.operation = operation
        self.reason = reason


# =============================================================================
# Transport Errors
# =============================================================================

class ProtocolError(HistdbError):
    """A frame or message could not be decoded."""
    pass


class DaemonNotRunningError(HistdbError):
    """The daemon socket is missing or refuses connections."""

    def __init__(self, socket_path: str, reason: str = ""):
        super().__init__(
            f"histdb daemon is not running (socket: {socket_path})",
            {"socket_path": socket_path, "reason": reason} if reason else {"socket_path": socket_path},
        )
        self.socket_path = socket_path


class DaemonAlreadyRunningError(HistdbError):
    """Another daemon answers on the socket path."""
    pass


# =============================================================================
# Import Errors
# =============================================================================

class HistoryImportError(HistdbError):
    """A source record could not be converted during import."""

    def __init__(self, source: str, location: str, reason: str):
        super().__init__(
            f"Cannot import record at {location} of {source}: {reason}",
            {"source": source, "location": location, "reason": reason}
        )
        self.source = source
        self.location = location
        self.reason = reason
