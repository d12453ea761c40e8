"""
Connector for a JSON key/value HTTP API.

Expected endpoints, relative to the base URL:

    GET    /items          -> [{"key": ..., "digest": ..., "size": ...}, ...]
                              (or {"items": [...]})
    GET    /items/{key}    -> raw payload bytes
    PUT    /items/{key}    -> stores the request body; may answer {"digest", "size"}
    DELETE /items/{key}    -> 404 when the key is absent
"""

import logging
from typing import Dict, List, Any, Optional
from urllib.parse import quote

import requests

from ..core.config import get_optional_env
from ..exceptions import EnumerationError, TransferError, TransientTransferError
from ..models.sync import Fingerprint, Item
from ..version import __version__
from .base import BaseConnector, ConnectorCapability

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


class HttpConnector(BaseConnector):
    """Items served by a key/value HTTP API."""

    def __init__(self, locator: str, token: Optional[str] = None, timeout: float = 30.0,
                 read_only: bool = False, session: Optional[requests.Session] = None, **kwargs):
        """
        Args:
            locator: Base URL of the API
            token: Bearer token; defaults to DATASYNC_HTTP_TOKEN
            timeout: Per-request timeout in seconds
            read_only: Refuse writes and deletes
            session: Pre-configured session (mainly for tests)
        """
        super().__init__(locator, **kwargs)
        self.base_url = locator.rstrip('/')
        self.timeout = timeout
        self.read_only = read_only

        self.session = session or requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
            'User-Agent': f'datasync/{__version__}'
        })
        token = token or get_optional_env("DATASYNC_HTTP_TOKEN")
        if token:
            self.session.headers['Authorization'] = f'Bearer {token}'

    def get_capabilities(self) -> ConnectorCapability:
        return ConnectorCapability(
            can_read=True,
            can_write=not self.read_only,
            can_delete=not self.read_only
        )

    def _item_url(self, key: str) -> str:
        return f"{self.base_url}/items/{quote(key, safe='')}"

    def _request(self, method: str, url: str, key: str = "", **kwargs) -> requests.Response:
        """Make a request, mapping failures onto transfer errors.

        Raises:
            TransientTransferError: Timeouts, connection errors, 429 and 5xx
            TransferError: Any other non-2xx answer
        """
        try:
            logger.debug(f"Making {method} request to {url}")
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            raise TransientTransferError(f"{method} {url} failed: {e}", key=key) from e
        except requests.exceptions.RequestException as e:
            raise TransferError(f"{method} {url} failed: {e}", key=key) from e

        if response.status_code in TRANSIENT_STATUS_CODES:
            raise TransientTransferError(f"HTTP {response.status_code} from {method} {url}", key=key)
        return response

    @staticmethod
    def _raise_for_status(response: requests.Response, key: str) -> None:
        if response.status_code >= 400:
            raise TransferError(f"HTTP {response.status_code}: {response.text[:200]}", key=key)

    def test_connection(self) -> bool:
        try:
            response = self._request('GET', f"{self.base_url}/items", params={'limit': 1})
            return response.ok
        except TransferError as e:
            logger.error(f"Cannot reach {self.base_url}: {e}")
            return False

    def _list_items(self) -> Dict[str, Item]:
        try:
            response = self._request('GET', f"{self.base_url}/items")
            self._raise_for_status(response, "")
            data = response.json()
        except (TransferError, ValueError) as e:
            raise EnumerationError(f"Failed to list {self.base_url}: {e}") from e

        entries: List[Dict[str, Any]] = data.get("items", []) if isinstance(data, dict) else data
        items: Dict[str, Item] = {}
        for entry in entries:
            try:
                key = entry["key"]
                fingerprint = Fingerprint(digest=entry["digest"], size=entry.get("size"))
            except (KeyError, TypeError, ValueError) as e:
                raise EnumerationError(f"Malformed listing entry from {self.base_url}: {entry!r}") from e
            items[key] = Item(key=key, fingerprint=fingerprint)
        return items

    def _read_payload(self, key: str) -> bytes:
        response = self._request('GET', self._item_url(key), key=key)
        if response.status_code == 404:
            raise TransferError(f"missing at source: {key}", key=key)
        self._raise_for_status(response, key)
        return response.content

    def _write_payload(self, key: str, payload: bytes) -> Fingerprint:
        response = self._request(
            'PUT', self._item_url(key), key=key,
            data=payload, headers={'Content-Type': 'application/octet-stream'}
        )
        self._raise_for_status(response, key)

        if response.content:
            try:
                body = response.json()
                if isinstance(body, dict) and "digest" in body:
                    return Fingerprint(digest=body["digest"], size=body.get("size"))
            except ValueError:
                pass

        # No fingerprint in the answer; read the item back
        stored = self._request('GET', self._item_url(key), key=key)
        self._raise_for_status(stored, key)
        return self.fingerprint_payload(stored.content)

    def _delete_item(self, key: str) -> bool:
        response = self._request('DELETE', self._item_url(key), key=key)
        if response.status_code == 404:
            return False
        self._raise_for_status(response, key)
        return True

    def close(self) -> None:
        """Close the underlying session."""
        self.session.close()
