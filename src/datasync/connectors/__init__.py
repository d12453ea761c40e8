"""
Connector framework for datasync.

This package contains all endpoint connectors that can be used as sources or
destinations for synchronization runs.
"""

from .base import BaseConnector, ConnectorCapability
from .filesystem import FilesystemConnector
from .http import HttpConnector
from .memory import MemoryConnector
from .sqlite import SQLiteConnector
from ..exceptions import ConfigurationError

__all__ = [
    "BaseConnector",
    "ConnectorCapability",
    "FilesystemConnector",
    "HttpConnector",
    "MemoryConnector",
    "SQLiteConnector",
    "CONNECTOR_REGISTRY",
    "get_connector",
    "create_connector",
]

# Connector registry for dynamic loading
CONNECTOR_REGISTRY = {
    "memory": MemoryConnector,
    "filesystem": FilesystemConnector,
    "sqlite": SQLiteConnector,
    "http": HttpConnector,
}

def get_connector(connector_type: str):
    """Get a connector class by type name."""
    if connector_type not in CONNECTOR_REGISTRY:
        raise ConfigurationError(f"Unknown connector type: {connector_type}")
    return CONNECTOR_REGISTRY[connector_type]

def create_connector(endpoint) -> BaseConnector:
    """Create a connector instance for an EndpointConfig."""
    connector_class = get_connector(endpoint.connector)
    try:
        return connector_class(**endpoint.get_connector_config())
    except TypeError as e:
        raise ConfigurationError(f"Invalid options for {endpoint.connector} connector: {e}") from e
