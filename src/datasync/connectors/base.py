"""
Base connector class for all sync endpoints.
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from typing import Dict, Any
from pydantic import BaseModel

from ..exceptions import ConnectorError
from ..models.sync import Fingerprint, Item

logger = logging.getLogger(__name__)


class ConnectorCapability(BaseModel):
    """Defines what operations a connector supports."""
    can_read: bool = False
    can_write: bool = False
    can_delete: bool = False


class BaseConnector(ABC):
    """
    Abstract base class for connectors.

    A connector exposes one data set as a mapping of stable keys to
    fingerprinted items, and moves opaque payload bytes in and out of it.
    Subclasses implement the underscore methods; the public methods check
    capabilities first.
    """

    def __init__(self, locator: str, **kwargs):
        """
        Initialize the connector.

        Args:
            locator: Path, URL or name identifying the data set
            **kwargs: Connector-specific options
        """
        self.locator = locator
        self.config = kwargs
        logger.info(f"Initialized {self.__class__.__name__} connector for {locator}")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.locator!r})"

    @abstractmethod
    def get_capabilities(self) -> ConnectorCapability:
        """Return what operations this connector supports."""
        pass

    @abstractmethod
    def test_connection(self) -> bool:
        """Test if the data set can be reached."""
        pass

    @staticmethod
    def fingerprint_payload(payload: bytes) -> Fingerprint:
        """Compute the SHA-256 fingerprint of a payload."""
        return Fingerprint(digest=hashlib.sha256(payload).hexdigest(), size=len(payload))

    def list_items(self) -> Dict[str, Item]:
        """
        List every item in the data set.

        Returns:
            Mapping of key to item, a snapshot taken at call time
        """
        if not self.get_capabilities().can_read:
            raise ConnectorError(f"{self.__class__.__name__} does not support reading")
        return self._list_items()

    def read_payload(self, key: str) -> bytes:
        """Read the full payload for a key."""
        if not self.get_capabilities().can_read:
            raise ConnectorError(f"{self.__class__.__name__} does not support reading")
        return self._read_payload(key)

    def write_payload(self, key: str, payload: bytes) -> Fingerprint:
        """
        Create or replace the item at key.

        Returns:
            Fingerprint of the item as stored after the write
        """
        if not self.get_capabilities().can_write:
            raise ConnectorError(f"{self.__class__.__name__} does not support writing")
        return self._write_payload(key, payload)

    def delete_item(self, key: str) -> bool:
        """
        Remove the item at key.

        Returns:
            True if something was removed, False if the key was already absent
        """
        if not self.get_capabilities().can_delete:
            raise ConnectorError(f"{self.__class__.__name__} does not support deleting")
        return self._delete_item(key)

    @abstractmethod
    def _list_items(self) -> Dict[str, Item]:
        pass

    @abstractmethod
    def _read_payload(self, key: str) -> bytes:
        pass

    @abstractmethod
    def _write_payload(self, key: str, payload: bytes) -> Fingerprint:
        pass

    @abstractmethod
    def _delete_item(self, key: str) -> bool:
        pass

    def close(self) -> None:
        """Release held resources. Called by the engine at the end of every run."""
        pass

    def describe(self) -> Dict[str, Any]:
        """Describe the connector for logs and CLI output."""
        return {
            "type": self.__class__.__name__,
            "locator": self.locator,
            "capabilities": self.get_capabilities().model_dump(),
        }
