"""Core data models for logdeck."""

from .backends import (
    BackendConfig,
    BackendType,
    BasicAuth,
    BearerAuth,
    RpcServerConfig,
)
from .logs import (
    LogAggregation,
    LogEntry,
    LogFilter,
    LogQuery,
    TimeRange,
    format_timestamp,
    parse_timestamp,
)
from .rpc import (
    InitializeResult,
    RpcErrorObject,
    RpcNotification,
    RpcPeerRequest,
    RpcRequest,
    RpcResponse,
    ToolCallResult,
    ToolDescriptor,
    UnknownMessage,
    parse_message,
)

__all__ = [
    # Logs
    "LogEntry",
    "LogQuery",
    "LogFilter",
    "TimeRange",
    "LogAggregation",
    "parse_timestamp",
    "format_timestamp",
    # RPC
    "RpcRequest",
    "RpcNotification",
    "RpcResponse",
    "RpcPeerRequest",
    "RpcErrorObject",
    "UnknownMessage",
    "ToolDescriptor",
    "ToolCallResult",
    "InitializeResult",
    "parse_message",
    # Configuration
    "BackendConfig",
    "BackendType",
    "BasicAuth",
    "BearerAuth",
    "RpcServerConfig",
]
