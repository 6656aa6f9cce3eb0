"""Log backend clients."""

from .base import FilterField, IBackendClient, entry_from_source, strip_control_chars
from .elasticsearch import ElasticsearchClient
from .factory import create_backend
from .kibana import KibanaClient
from .openobserve import OpenObserveClient

__all__ = [
    "FilterField",
    "IBackendClient",
    "ElasticsearchClient",
    "OpenObserveClient",
    "KibanaClient",
    "create_backend",
    "entry_from_source",
    "strip_control_chars",
]
