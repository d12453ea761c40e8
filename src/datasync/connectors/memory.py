"""
In-memory connector, useful for embedding and tests.
"""

import logging
import threading
from typing import Dict, Optional, Union

from ..exceptions import TransferError
from ..models.sync import Fingerprint, Item
from .base import BaseConnector, ConnectorCapability

logger = logging.getLogger(__name__)


class MemoryConnector(BaseConnector):
    """Dictionary-backed data set. Safe to use from several worker threads."""

    def __init__(self, locator: str = "memory", items: Optional[Dict[str, Union[str, bytes]]] = None,
                 read_only: bool = False, **kwargs):
        super().__init__(locator, **kwargs)
        self.read_only = read_only
        self._lock = threading.Lock()
        self._data: Dict[str, bytes] = {}
        for key, value in (items or {}).items():
            self._data[key] = value.encode("utf-8") if isinstance(value, str) else value

    def get_capabilities(self) -> ConnectorCapability:
        return ConnectorCapability(
            can_read=True,
            can_write=not self.read_only,
            can_delete=not self.read_only
        )

    def test_connection(self) -> bool:
        return True

    def snapshot(self) -> Dict[str, bytes]:
        """Copy of the current contents."""
        with self._lock:
            return dict(self._data)

    def _list_items(self) -> Dict[str, Item]:
        with self._lock:
            return {
                key: Item(key=key, fingerprint=self.fingerprint_payload(payload))
                for key, payload in self._data.items()
            }

    def _read_payload(self, key: str) -> bytes:
        with self._lock:
            if key not in self._data:
                raise TransferError(f"missing at source: {key}", key=key)
            return self._data[key]

    def _write_payload(self, key: str, payload: bytes) -> Fingerprint:
        with self._lock:
            self._data[key] = bytes(payload)
            return self.fingerprint_payload(self._data[key])

    def _delete_item(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None
