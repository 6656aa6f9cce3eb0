"""RPC module."""

from .client import IRpcClient, ProcessRpcClient

__all__ = ["IRpcClient", "ProcessRpcClient"]
