"""Log tools module."""

from .executor import IToolExecutor, ToolExecutor, parse_time

__all__ = ["IToolExecutor", "ToolExecutor", "parse_time"]
