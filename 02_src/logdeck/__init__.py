"""logdeck core module."""

__version__ = "0.1.0"

from .backends import (  # noqa: E402
    ElasticsearchClient,
    IBackendClient,
    KibanaClient,
    OpenObserveClient,
    create_backend,
)
from .cache import Cache, ICache  # noqa: E402
from .config import Settings, load_settings  # noqa: E402
from .errors import (  # noqa: E402
    BackendError,
    BackendErrorKind,
    ConfigError,
    ExportError,
    LogDeckError,
    ProcessDied,
    ProtocolError,
    RpcCallError,
    Timeout,
    ToolExecutionError,
)
from .explorer import ILogExplorer, LogExplorer  # noqa: E402
from .models import (  # noqa: E402
    BackendConfig,
    BackendType,
    LogAggregation,
    LogEntry,
    LogFilter,
    LogQuery,
    RpcServerConfig,
    TimeRange,
    ToolDescriptor,
)
from .retry import RetryConfig, RetryPolicy  # noqa: E402
from .rpc import IRpcClient, ProcessRpcClient  # noqa: E402
from .session import ISession, Session  # noqa: E402
from .tools import ToolExecutor  # noqa: E402

__all__ = [
    # Session
    "Session",
    "ISession",
    "Settings",
    "load_settings",
    # Models
    "LogEntry",
    "LogQuery",
    "LogFilter",
    "TimeRange",
    "LogAggregation",
    "ToolDescriptor",
    "BackendConfig",
    "BackendType",
    "RpcServerConfig",
    # Components
    "ICache",
    "Cache",
    "RetryConfig",
    "RetryPolicy",
    "IRpcClient",
    "ProcessRpcClient",
    "IBackendClient",
    "ElasticsearchClient",
    "OpenObserveClient",
    "KibanaClient",
    "create_backend",
    "ILogExplorer",
    "LogExplorer",
    "ToolExecutor",
    # Errors
    "LogDeckError",
    "ConfigError",
    "ProtocolError",
    "ProcessDied",
    "Timeout",
    "RpcCallError",
    "BackendError",
    "BackendErrorKind",
    "ToolExecutionError",
    "ExportError",
]
