"""Cache module."""

from .cache import Cache, ICache

__all__ = ["Cache", "ICache"]
