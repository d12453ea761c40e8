"""Connector doubles and config builders shared by the test suite."""

import threading
import time
from typing import Dict, List, Optional, Union

from datasync.connectors import BaseConnector, MemoryConnector
from datasync.exceptions import EnumerationError
from datasync.models import EndpointConfig, Fingerprint, Item, RetryPolicy, SyncConfig


def make_config(**overrides) -> SyncConfig:
    """A memory-to-memory config with instant retries."""
    values = {
        "id": "test-sync",
        "source": EndpointConfig(connector="memory", locator="src"),
        "destination": EndpointConfig(connector="memory", locator="dst"),
        "retry": RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0),
    }
    values.update(overrides)
    return SyncConfig(**values)


def factory_for(source: BaseConnector, destination: BaseConnector):
    """Connector factory that hands out prebuilt connectors by locator."""
    by_locator = {"src": source, "dst": destination}

    def factory(endpoint: EndpointConfig) -> BaseConnector:
        return by_locator[endpoint.locator]

    return factory


class FlakyConnector(MemoryConnector):
    """
    Memory connector with scripted write and delete failures.

    ``fail_writes[key]`` is a list of exceptions raised by successive writes
    to that key; once exhausted, writes succeed.
    """

    def __init__(self, locator: str = "dst", items: Optional[Dict[str, Union[str, bytes]]] = None,
                 delay: float = 0.0, corrupt: Optional[List[str]] = None):
        super().__init__(locator, items=items)
        self.fail_writes: Dict[str, List[Exception]] = {}
        self.fail_deletes: Dict[str, List[Exception]] = {}
        self.delay = delay
        self.corrupt = set(corrupt or [])
        self.write_attempts: Dict[str, int] = {}
        self.started: List[str] = []
        self.active = 0
        self.peak_active = 0
        self._counter_lock = threading.Lock()

    def _enter(self, key: str) -> None:
        with self._counter_lock:
            self.started.append(key)
            self.active += 1
            self.peak_active = max(self.peak_active, self.active)

    def _exit(self) -> None:
        with self._counter_lock:
            self.active -= 1

    def _write_payload(self, key: str, payload: bytes) -> Fingerprint:
        self._enter(key)
        try:
            with self._counter_lock:
                self.write_attempts[key] = self.write_attempts.get(key, 0) + 1
                pending = self.fail_writes.get(key)
                error = pending.pop(0) if pending else None
            if self.delay:
                time.sleep(self.delay)
            if error is not None:
                raise error
            fingerprint = super()._write_payload(key, payload)
            if key in self.corrupt:
                return Fingerprint(digest="corrupted", size=fingerprint.size)
            return fingerprint
        finally:
            self._exit()

    def _delete_item(self, key: str) -> bool:
        self._enter(key)
        try:
            pending = self.fail_deletes.get(key)
            if pending:
                raise pending.pop(0)
            if self.delay:
                time.sleep(self.delay)
            return super()._delete_item(key)
        finally:
            self._exit()


class BrokenListingConnector(MemoryConnector):
    """Memory connector whose listing always fails."""

    def __init__(self, locator: str = "src", error: Optional[Exception] = None):
        super().__init__(locator)
        self.error = error or EnumerationError("listing unavailable")

    def _list_items(self) -> Dict[str, Item]:
        raise self.error
