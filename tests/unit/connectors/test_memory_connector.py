"""Tests for the in-memory connector and the connector registry."""

import pytest

from datasync.connectors import (
    CONNECTOR_REGISTRY, FilesystemConnector, MemoryConnector, create_connector, get_connector
)
from datasync.exceptions import ConfigurationError, ConnectorError
from datasync.models import EndpointConfig


class TestMemoryConnector:

    def test_round_trip(self) -> None:
        connector = MemoryConnector(items={"a": "alpha"})
        assert connector.read_payload("a") == b"alpha"
        fingerprint = connector.write_payload("b", b"beta")
        assert connector.list_items()["b"].fingerprint == fingerprint
        assert connector.delete_item("a") is True
        assert connector.delete_item("a") is False
        assert connector.snapshot() == {"b": b"beta"}

    def test_read_only(self) -> None:
        connector = MemoryConnector(read_only=True)
        with pytest.raises(ConnectorError):
            connector.write_payload("a", b"x")

    def test_describe(self) -> None:
        description = MemoryConnector("cache").describe()
        assert description["type"] == "MemoryConnector"
        assert description["locator"] == "cache"
        assert description["capabilities"]["can_delete"] is True


class TestConnectorRegistry:

    def test_registry_contains_builtin_connectors(self) -> None:
        assert set(CONNECTOR_REGISTRY) == {"memory", "filesystem", "sqlite", "http"}

    def test_unknown_connector(self) -> None:
        with pytest.raises(ConfigurationError):
            get_connector("ftp")

    def test_create_connector_passes_options(self, tmp_path) -> None:
        endpoint = EndpointConfig(connector="filesystem", locator=str(tmp_path), options={"read_only": True})
        connector = create_connector(endpoint)
        assert isinstance(connector, FilesystemConnector)
        assert connector.read_only is True
