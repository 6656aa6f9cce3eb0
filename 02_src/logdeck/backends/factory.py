"""Backend selection by configuration tag."""

from typing import Callable

import httpx

from ..models import BackendConfig, BackendType
from .base import IBackendClient
from .elasticsearch import ElasticsearchClient
from .kibana import KibanaClient
from .openobserve import OpenObserveClient

_BACKENDS: dict[BackendType, Callable[..., IBackendClient]] = {
    BackendType.ELASTICSEARCH: ElasticsearchClient,
    BackendType.OPENOBSERVE: OpenObserveClient,
    BackendType.KIBANA: KibanaClient,
}


def create_backend(
    config: BackendConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> IBackendClient:
    """Instantiate the client matching config.type."""
    return _BACKENDS[config.type](config, transport=transport)
