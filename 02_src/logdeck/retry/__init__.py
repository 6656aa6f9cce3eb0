"""Retry module."""

from .policy import IRetryPolicy, RetryConfig, RetryPolicy

__all__ = ["IRetryPolicy", "RetryConfig", "RetryPolicy"]
