"""
SQLite connector that syncs table rows.

Each row is an item keyed ``<table>/<primary key>``. The payload is the row
serialized as canonical JSON, so two rows with equal column values have equal
fingerprints regardless of which database they live in. Tables without a
single-column primary key are keyed by rowid.
"""

import base64
import json
import logging
import sqlite3
from contextlib import closing
from typing import Dict, List, Any, Optional, Tuple, Union

from ..exceptions import EnumerationError, TransferError, TransientTransferError
from ..models.sync import Fingerprint, Item
from .base import BaseConnector, ConnectorCapability

logger = logging.getLogger(__name__)

BLOB_MARKER = "$base64"
TRANSIENT_MESSAGES = ("database is locked", "database table is locked", "database is busy")


def quote_identifier(name: str) -> str:
    """Quote a table or column name for use in SQL."""
    return '"' + name.replace('"', '""') + '"'


def encode_row(row: Dict[str, Any]) -> bytes:
    """Serialize a row to canonical JSON bytes."""
    encoded = {}
    for column, value in row.items():
        if isinstance(value, bytes):
            value = {BLOB_MARKER: base64.b64encode(value).decode("ascii")}
        encoded[column] = value
    return json.dumps(encoded, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def decode_row(payload: bytes) -> Dict[str, Any]:
    """Inverse of encode_row."""
    row = json.loads(payload.decode("utf-8"))
    if not isinstance(row, dict):
        raise ValueError("row payload must be a JSON object")
    for column, value in row.items():
        if isinstance(value, dict) and set(value) == {BLOB_MARKER}:
            row[column] = base64.b64decode(value[BLOB_MARKER])
    return row


class SQLiteConnector(BaseConnector):
    """Rows of one or more tables in a SQLite database file."""

    def __init__(self, locator: str, tables: Optional[Union[str, List[str]]] = None,
                 timeout: float = 5.0, read_only: bool = False, **kwargs):
        """
        Args:
            locator: Path to the database file
            tables: Tables to sync (list or comma-separated); all user tables if omitted
            timeout: Seconds to wait on a locked database before giving up
            read_only: Refuse writes and deletes
        """
        super().__init__(locator, **kwargs)
        if isinstance(tables, str):
            tables = [t.strip() for t in tables.split(",") if t.strip()]
        self.tables = list(tables) if tables else None
        self.timeout = timeout
        self.read_only = read_only

    def get_capabilities(self) -> ConnectorCapability:
        return ConnectorCapability(
            can_read=True,
            can_write=not self.read_only,
            can_delete=not self.read_only
        )

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.locator, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        return conn

    def test_connection(self) -> bool:
        try:
            with closing(self._connect()) as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error as e:
            logger.error(f"Cannot open SQLite database {self.locator}: {e}")
            return False

    def _table_names(self, conn: sqlite3.Connection) -> List[str]:
        rows = conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        ).fetchall()
        existing = [row["name"] for row in rows]
        if self.tables is None:
            return existing
        return [t for t in self.tables if t in existing]

    @staticmethod
    def _key_column(conn: sqlite3.Connection, table: str) -> Tuple[str, bool]:
        """
        Find the column that identifies a row.

        Returns:
            (column, is_rowid) where is_rowid means the table has no
            single-column primary key
        """
        columns = conn.execute(f"PRAGMA table_info({quote_identifier(table)})").fetchall()
        pk_columns = [c["name"] for c in columns if c["pk"]]
        if len(pk_columns) == 1:
            return pk_columns[0], False
        return "rowid", True

    def _split_key(self, key: str) -> Tuple[str, str]:
        table, sep, pk = key.partition("/")
        if not sep or not table or not pk:
            raise TransferError(f"invalid key: {key!r}", key=key)
        if self.tables is not None and table not in self.tables:
            raise TransferError(f"table not configured: {table}", key=key)
        return table, pk

    @staticmethod
    def _select_row(conn: sqlite3.Connection, table: str, key_column: str, pk: str) -> Optional[Dict[str, Any]]:
        row = conn.execute(
            f"SELECT * FROM {quote_identifier(table)} WHERE CAST({quote_identifier(key_column)} AS TEXT) = ?",
            (pk,),
        ).fetchone()
        return dict(row) if row is not None else None

    @staticmethod
    def _raise_for_sqlite_error(error: sqlite3.Error, key: str) -> None:
        message = str(error)
        if isinstance(error, sqlite3.OperationalError) and message.lower() in TRANSIENT_MESSAGES:
            raise TransientTransferError(message, key=key) from error
        raise TransferError(message, key=key) from error

    def _list_items(self) -> Dict[str, Item]:
        items: Dict[str, Item] = {}
        try:
            with closing(self._connect()) as conn:
                tables = self._table_names(conn)
                if self.tables is not None:
                    missing = set(self.tables) - set(tables)
                    if missing:
                        logger.warning(f"Tables not found in {self.locator}: {sorted(missing)}")
                for table in tables:
                    key_column, is_rowid = self._key_column(conn, table)
                    select = "SELECT rowid AS rowid, *" if is_rowid else "SELECT *"
                    for row in conn.execute(f"{select} FROM {quote_identifier(table)}"):
                        data = dict(row)
                        pk = data.pop("rowid") if is_rowid else data[key_column]
                        key = f"{table}/{pk}"
                        items[key] = Item(key=key, fingerprint=self.fingerprint_payload(encode_row(data)))
        except sqlite3.Error as e:
            raise EnumerationError(f"Failed to list rows in {self.locator}: {e}") from e
        logger.debug(f"Listed {len(items)} rows from {self.locator}")
        return items

    def _read_payload(self, key: str) -> bytes:
        table, pk = self._split_key(key)
        try:
            with closing(self._connect()) as conn:
                key_column, is_rowid = self._key_column(conn, table)
                row = self._select_row(conn, table, key_column, pk)
        except sqlite3.Error as e:
            self._raise_for_sqlite_error(e, key)
        if row is None:
            raise TransferError(f"missing at source: {key}", key=key)
        if is_rowid:
            row.pop("rowid", None)
        return encode_row(row)

    def _write_payload(self, key: str, payload: bytes) -> Fingerprint:
        table, pk = self._split_key(key)
        try:
            row = decode_row(payload)
        except ValueError as e:
            raise TransferError(f"malformed payload: {e}", key=key) from e

        try:
            with closing(self._connect()) as conn:
                if table not in self._table_names(conn):
                    raise TransferError(f"table not found at destination: {table}", key=key)
                key_column, is_rowid = self._key_column(conn, table)
                if is_rowid:
                    row["rowid"] = int(pk)
                columns = list(row)
                placeholders = ", ".join("?" for _ in columns)
                column_sql = ", ".join(quote_identifier(c) for c in columns)
                with conn:
                    conn.execute(
                        f"INSERT OR REPLACE INTO {quote_identifier(table)} ({column_sql}) VALUES ({placeholders})",
                        [row[c] for c in columns],
                    )
                stored = self._select_row(conn, table, key_column, pk)
        except sqlite3.Error as e:
            self._raise_for_sqlite_error(e, key)

        if stored is None:
            raise TransferError(f"row not readable after write: {key}", key=key)
        if is_rowid:
            stored.pop("rowid", None)
        return self.fingerprint_payload(encode_row(stored))

    def _delete_item(self, key: str) -> bool:
        table, pk = self._split_key(key)
        try:
            with closing(self._connect()) as conn:
                if table not in self._table_names(conn):
                    return False
                key_column, _ = self._key_column(conn, table)
                with conn:
                    cursor = conn.execute(
                        f"DELETE FROM {quote_identifier(table)} WHERE CAST({quote_identifier(key_column)} AS TEXT) = ?",
                        (pk,),
                    )
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            self._raise_for_sqlite_error(e, key)
