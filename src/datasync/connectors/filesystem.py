"""
Local directory connector.

Keys are POSIX paths relative to the root directory. Writes go through a
temporary file in the target directory followed by an atomic rename, so a
reader never observes a half-written file.
"""

import hashlib
import logging
import os
import threading
from pathlib import Path
from typing import Dict

from ..exceptions import EnumerationError, TransferError
from ..models.sync import Fingerprint, Item
from .base import BaseConnector, ConnectorCapability

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".datasync-tmp"
HASH_CHUNK_SIZE = 1024 * 1024


class FilesystemConnector(BaseConnector):
    """Directory tree on the local filesystem."""

    def __init__(self, locator: str, read_only: bool = False, **kwargs):
        super().__init__(locator, **kwargs)
        self.root = Path(locator).expanduser()
        self.read_only = read_only
        self._tree_lock = threading.Lock()

    def get_capabilities(self) -> ConnectorCapability:
        return ConnectorCapability(
            can_read=True,
            can_write=not self.read_only,
            can_delete=not self.read_only
        )

    def test_connection(self) -> bool:
        return self.root.is_dir()

    @staticmethod
    def hash_file(path: Path) -> Fingerprint:
        """Compute the fingerprint of a file without loading it whole."""
        digest = hashlib.sha256()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
                digest.update(chunk)
        stat = path.stat()
        return Fingerprint(digest=digest.hexdigest(), size=stat.st_size, modified=stat.st_mtime)

    def _resolve(self, key: str) -> Path:
        """Map a key to a path, refusing keys that escape the root."""
        parts = key.split("/")
        if not key or key.startswith("/") or any(part in ("", ".", "..") for part in parts):
            raise TransferError(f"invalid key: {key!r}", key=key)
        return self.root.joinpath(*parts)

    def _list_items(self) -> Dict[str, Item]:
        if not self.root.is_dir():
            raise EnumerationError(f"Directory not found: {self.root}")

        items: Dict[str, Item] = {}
        for path in sorted(self.root.rglob("*")):
            if not path.is_file() or path.is_symlink() or path.name.endswith(TEMP_SUFFIX):
                continue
            key = path.relative_to(self.root).as_posix()
            items[key] = Item(key=key, fingerprint=self.hash_file(path))
        logger.debug(f"Listed {len(items)} files under {self.root}")
        return items

    def _read_payload(self, key: str) -> bytes:
        path = self._resolve(key)
        if not path.is_file():
            raise TransferError(f"missing at source: {key}", key=key)
        return path.read_bytes()

    def _write_payload(self, key: str, payload: bytes) -> Fingerprint:
        path = self._resolve(key)
        if path.is_dir():
            raise TransferError(f"a directory is in the way: {key}", key=key)
        tmp_path = path.with_name(f".{path.name}{TEMP_SUFFIX}")
        # The open temp file keeps the directory from being pruned by a concurrent delete
        with self._tree_lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            f = open(tmp_path, "wb")
        try:
            with f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
        return self.hash_file(path)

    def _delete_item(self, key: str) -> bool:
        path = self._resolve(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        with self._tree_lock:
            self._prune_empty_parents(path.parent)
        return True

    def _prune_empty_parents(self, directory: Path) -> None:
        while directory != self.root and self.root in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                # not empty
                return
            directory = directory.parent
