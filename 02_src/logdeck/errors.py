"""Error taxonomy shared by every logdeck component."""

from enum import Enum


class LogDeckError(Exception):
    """Base class for all errors raised by logdeck."""

    transient = False


class ConfigError(LogDeckError):
    """Invalid or missing configuration."""


class ProtocolError(LogDeckError):
    """Malformed or unexpected message from the RPC peer."""


class ProcessDied(LogDeckError):
    """The RPC peer process exited or one of its pipes closed."""

    def __init__(self, message: str, reconnectable: bool = False):
        super().__init__(message)
        self.reconnectable = reconnectable

    @property
    def transient(self) -> bool:  # type: ignore[override]
        return self.reconnectable


class Timeout(LogDeckError):
    """No answer within the configured window."""

    transient = True


class RpcCallError(LogDeckError):
    """The RPC peer answered with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: object = None):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.data = data


class BackendErrorKind(str, Enum):
    """Failure classes of a log backend call."""

    AUTH = "auth"
    NETWORK = "network"
    PARSE = "parse"
    TIMEOUT = "timeout"
    QUERY = "query"


class BackendError(LogDeckError):
    """A log backend call failed."""

    def __init__(self, kind: BackendErrorKind, backend: str, message: str):
        super().__init__(f"{backend} {kind.value} error: {message}")
        self.kind = kind
        self.backend = backend

    @property
    def transient(self) -> bool:  # type: ignore[override]
        return self.kind in (BackendErrorKind.NETWORK, BackendErrorKind.TIMEOUT)


class ToolExecutionError(LogDeckError):
    """A log tool could not be executed."""


class ExportError(LogDeckError):
    """Entries could not be written to or read from a file."""


def is_transient(exc: BaseException) -> bool:
    """Return True for failures that are safe to retry."""
    return isinstance(exc, LogDeckError) and bool(exc.transient)
