"""
Tenant-scoped local SQLite store for the Gobex sync engine.

This module manages the durable local data of every partition:
- Record collections (products, sales, purchases, ...) upserted by id
- The settings document
- Whole-snapshot read and replace for the sync orchestrator

The local store is the source of truth between synchronizations.
Application modules read and write it directly; the orchestrator only
reads or overwrites whole snapshots.

Invariants:
    - One SQLite file per partition, named by namespace_for(tenant_id)
    - Operations for tenant A never open tenant B's file
    - Isolation comes from deterministic file derivation, not locking
    - replace_snapshot() is a single transaction

How to change safely:
    - Schema migrations must be backward compatible
    - Never rename a wire key in WIRE_KEYS; deployed backends hold them

Table schema:
    records:
        - collection TEXT
        - record_id TEXT
        - payload_json TEXT
        - updated_at INTEGER (Unix ms)
        - PRIMARY KEY (collection, record_id)

    documents (keys "settings", "sync_state"):
        - key TEXT PRIMARY KEY
        - value_json TEXT
        - updated_at INTEGER (Unix ms)
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..tenant import OWNER_NAMESPACE, namespace_for, tenant_from_namespace

logger = logging.getLogger(__name__)

SETTINGS_KEY = "settings"
SYNC_STATE_KEY = "sync_state"

# Local collection name -> snapshot wire key
WIRE_KEYS: dict[str, str] = {
    "products": "products",
    "sales": "sales",
    "purchases": "purchases",
    "multi_purchases": "multiPurchases",
    "packaging": "packaging",
    "packaging_purchases": "packagingPurchases",
    "expenses": "expenses",
    "inventory_records": "inventoryRecords",
    "stock_sales_calculations": "stockSalesCalculations",
    "user_lots": "userLots",
    "licenses": "licenses",
}
COLLECTIONS = tuple(WIRE_KEYS)

_FROM_WIRE = {wire: local for local, wire in WIRE_KEYS.items()}
_COLLECTION_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")


class StoreError(Exception):
    """Base exception for local store operations."""

    pass


class StoreUnavailableError(StoreError):
    """The underlying storage failed (disk, quota, corruption)."""

    pass


class InvalidRecordError(StoreError):
    """Record or collection name is malformed."""

    pass


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Snapshot:
    """The complete set of a partition's collections at a point in time.

    A snapshot is the unit of upload and download; there is no per-record
    sync granularity.

    Attributes:
        collections: Local collection name -> list of records
        settings: The settings document
    """

    collections: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    settings: dict[str, Any] = field(default_factory=dict)

    @property
    def record_count(self) -> int:
        """Total number of records across collections."""
        return sum(len(records) for records in self.collections.values())

    def is_empty(self) -> bool:
        return self.record_count == 0 and not self.settings

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire representation (camelCase collection keys)."""
        data: dict[str, Any] = {}
        for name, records in self.collections.items():
            data[WIRE_KEYS.get(name, name)] = [dict(r) for r in records]
        data[SETTINGS_KEY] = dict(self.settings)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Snapshot:
        """Create from the wire representation.

        Non-list values other than settings are ignored, like a backend
        that stored extra metadata next to the collections.
        """
        collections: dict[str, list[dict[str, Any]]] = {}
        settings: dict[str, Any] = {}
        for key, value in data.items():
            if key == SETTINGS_KEY:
                settings = dict(value or {})
            elif isinstance(value, list):
                collections[_FROM_WIRE.get(key, key)] = [dict(r) for r in value]
        return cls(collections=collections, settings=settings)

    def canonical(self) -> dict[str, Any]:
        """Order-insensitive form used to compare snapshots."""
        return {
            "collections": {
                name: sorted(records, key=lambda r: str(r.get("id")))
                for name, records in self.collections.items()
                if records
            },
            "settings": self.settings,
        }


def _record_id(record: dict[str, Any]) -> str:
    if not isinstance(record, dict):
        raise InvalidRecordError(f"Record must be a mapping, got {type(record).__name__}")
    record_id = record.get("id")
    if record_id is None or record_id == "":
        raise InvalidRecordError("Record has no 'id'")
    return str(record_id)


def _check_collection(collection: str) -> None:
    if not isinstance(collection, str) or not _COLLECTION_RE.match(collection):
        raise InvalidRecordError(f"Invalid collection name: {collection!r}")


class LocalStore:
    """Per-partition SQLite store for application data.

    All methods take the tenant id explicitly; None selects the owner
    partition. See TenantScopedStore for a view bound to a TenantContext.

    Thread safety:
        Each operation opens its own connection. SQLite WAL mode handles
        concurrent access from several processes on the same data_dir.

    Example:
        >>> store = LocalStore("/var/lib/gobex")
        >>> await store.put("UL-4F2A9C", "products", {"id": "P1", "nom": "Flag"})
        >>> await store.get("UL-4F2A9C", "products")
        [{'id': 'P1', 'nom': 'Flag'}]
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the local store.

        Args:
            data_dir: Directory for SQLite database files
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.data_dir = Path(data_dir)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms

    def get_db_path(self, tenant_id: str | None) -> Path:
        """Get database file path for a partition.

        Raises:
            InvalidTenantError: If the tenant id is malformed
        """
        return self.data_dir / f"{namespace_for(tenant_id)}.db"

    @contextmanager
    def _connect(self, tenant_id: str | None) -> Iterator[sqlite3.Connection]:
        """Open a configured connection with the schema in place.

        Raises:
            StoreUnavailableError: If SQLite fails
        """
        db_path = self.get_db_path(tenant_id)
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except (OSError, sqlite3.Error) as e:
            raise StoreUnavailableError(f"Cannot open local store {db_path.name}: {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            self._create_schema(conn)
            yield conn
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Local store failure in {db_path.name}: {e}") from e
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS records (
                collection TEXT NOT NULL,
                record_id TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                updated_at INTEGER NOT NULL,
                PRIMARY KEY (collection, record_id)
            );

            CREATE TABLE IF NOT EXISTS documents (
                key TEXT PRIMARY KEY,
                value_json TEXT NOT NULL,
                updated_at INTEGER NOT NULL
            );

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def get(self, tenant_id: str | None, collection: str) -> list[dict[str, Any]]:
        """Get all records of a collection.

        Args:
            tenant_id: Tenant identifier (None for owner)
            collection: Collection name

        Returns:
            Records in insertion order
        """
        _check_collection(collection)
        with self._connect(tenant_id) as conn:
            rows = conn.execute(
                "SELECT payload_json FROM records WHERE collection = ? ORDER BY rowid",
                (collection,),
            ).fetchall()
        return [json.loads(row["payload_json"]) for row in rows]

    async def get_record(
        self, tenant_id: str | None, collection: str, record_id: str
    ) -> dict[str, Any] | None:
        """Get a single record by id, or None."""
        _check_collection(collection)
        with self._connect(tenant_id) as conn:
            row = conn.execute(
                "SELECT payload_json FROM records WHERE collection = ? AND record_id = ?",
                (collection, str(record_id)),
            ).fetchone()
        return json.loads(row["payload_json"]) if row else None

    async def put(self, tenant_id: str | None, collection: str, record: dict[str, Any]) -> None:
        """Insert or replace a record, keyed by its "id".

        Raises:
            InvalidRecordError: If the record has no id
        """
        _check_collection(collection)
        record_id = _record_id(record)
        with self._connect(tenant_id) as conn:
            conn.execute(
                """
                INSERT INTO records (collection, record_id, payload_json, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (collection, record_id)
                DO UPDATE SET payload_json = excluded.payload_json,
                              updated_at = excluded.updated_at
                """,
                (collection, record_id, json.dumps(record), _now_ms()),
            )

    async def delete(self, tenant_id: str | None, collection: str, record_id: str) -> bool:
        """Delete a record.

        Returns:
            True if a record was removed
        """
        _check_collection(collection)
        with self._connect(tenant_id) as conn:
            cursor = conn.execute(
                "DELETE FROM records WHERE collection = ? AND record_id = ?",
                (collection, str(record_id)),
            )
            return cursor.rowcount > 0

    def _read_document(self, tenant_id: str | None, key: str) -> dict[str, Any] | None:
        with self._connect(tenant_id) as conn:
            row = conn.execute(
                "SELECT value_json FROM documents WHERE key = ?", (key,)
            ).fetchone()
        return json.loads(row["value_json"]) if row else None

    def _write_document(self, tenant_id: str | None, key: str, value: dict[str, Any]) -> None:
        with self._connect(tenant_id) as conn:
            conn.execute(
                """
                INSERT INTO documents (key, value_json, updated_at) VALUES (?, ?, ?)
                ON CONFLICT (key) DO UPDATE SET value_json = excluded.value_json,
                                                updated_at = excluded.updated_at
                """,
                (key, json.dumps(value), _now_ms()),
            )

    async def get_settings(self, tenant_id: str | None) -> dict[str, Any]:
        """Get the settings document (empty when never written)."""
        return self._read_document(tenant_id, SETTINGS_KEY) or {}

    async def put_settings(self, tenant_id: str | None, settings: dict[str, Any]) -> None:
        """Replace the settings document."""
        self._write_document(tenant_id, SETTINGS_KEY, settings)

    async def get_sync_state(self, tenant_id: str | None) -> dict[str, Any]:
        """Get the partition's sync bookkeeping (last_sync, ...).

        Kept apart from the snapshot: replace_snapshot() leaves it alone
        and it is never uploaded.
        """
        return self._read_document(tenant_id, SYNC_STATE_KEY) or {}

    async def put_sync_state(self, tenant_id: str | None, state: dict[str, Any]) -> None:
        self._write_document(tenant_id, SYNC_STATE_KEY, state)

    async def read_snapshot(self, tenant_id: str | None) -> Snapshot:
        """Read every collection and the settings of a partition.

        Known collections are always present, possibly empty.
        """
        collections: dict[str, list[dict[str, Any]]] = {name: [] for name in COLLECTIONS}
        with self._connect(tenant_id) as conn:
            for row in conn.execute(
                "SELECT collection, payload_json FROM records ORDER BY rowid"
            ):
                collections.setdefault(row["collection"], []).append(
                    json.loads(row["payload_json"])
                )
            settings_row = conn.execute(
                "SELECT value_json FROM documents WHERE key = ?", (SETTINGS_KEY,)
            ).fetchone()
        settings = json.loads(settings_row["value_json"]) if settings_row else {}
        return Snapshot(collections=collections, settings=settings)

    async def replace_snapshot(self, tenant_id: str | None, snapshot: Snapshot) -> int:
        """Overwrite a partition wholesale with a snapshot.

        Args:
            tenant_id: Tenant identifier (None for owner)
            snapshot: Snapshot to install

        Returns:
            Number of distinct records written; a repeated id within a
            collection counts once and the last copy wins

        Raises:
            InvalidRecordError: If a record has no id (nothing is written)
        """
        rows: dict[tuple[str, str], tuple[str, str, str, int]] = {}
        now = _now_ms()
        for collection, records in snapshot.collections.items():
            _check_collection(collection)
            for record in records:
                record_id = _record_id(record)
                rows[(collection, record_id)] = (collection, record_id, json.dumps(record), now)

        with self._connect(tenant_id) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.execute("DELETE FROM records")
                conn.execute("DELETE FROM documents WHERE key = ?", (SETTINGS_KEY,))
                conn.executemany(
                    """
                    INSERT OR REPLACE INTO records
                        (collection, record_id, payload_json, updated_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    list(rows.values()),
                )
                if snapshot.settings:
                    conn.execute(
                        "INSERT INTO documents (key, value_json, updated_at) VALUES (?, ?, ?)",
                        (SETTINGS_KEY, json.dumps(snapshot.settings), now),
                    )
                conn.execute("COMMIT")
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise

        logger.info(
            "Replaced local snapshot",
            extra={"tenant_id": tenant_id or OWNER_NAMESPACE, "record_count": len(rows)},
        )
        return len(rows)

    async def clear_tenant(self, tenant_id: str | None) -> int:
        """Remove every key under a partition's namespace.

        Used when a tenant is deprovisioned. Other partitions are untouched.

        Returns:
            Number of records removed
        """
        if not self.get_db_path(tenant_id).exists():
            return 0

        with self._connect(tenant_id) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                removed = conn.execute("DELETE FROM records").rowcount
                conn.execute("DELETE FROM documents")
                conn.execute("COMMIT")
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise

        logger.info(
            "Cleared tenant data",
            extra={"tenant_id": tenant_id or OWNER_NAMESPACE, "removed": removed},
        )
        return removed

    async def tenant_exists(self, tenant_id: str | None) -> bool:
        """Check if a partition has a database file."""
        return self.get_db_path(tenant_id).exists()

    async def list_tenants(self) -> list[str]:
        """List tenant ids that have local data (owner excluded)."""
        if not self.data_dir.exists():
            return []
        tenants = []
        for path in self.data_dir.glob("tenant_*.db"):
            tenant_id = tenant_from_namespace(path.stem)
            if tenant_id is None:
                logger.warning(f"Ignoring unrecognized database file {path.name}")
                continue
            tenants.append(tenant_id)
        return sorted(tenants)

    async def stats(self, tenant_id: str | None) -> dict[str, Any]:
        """Per-collection record counts of a partition."""
        counts = {name: 0 for name in COLLECTIONS}
        with self._connect(tenant_id) as conn:
            for row in conn.execute(
                "SELECT collection, COUNT(*) AS n FROM records GROUP BY collection"
            ):
                counts[row["collection"]] = row["n"]
        return {"collections": counts, "total_records": sum(counts.values())}

    async def is_available(self) -> bool:
        """Whether the store can be opened for writing."""
        try:
            with self._connect(None) as conn:
                conn.execute("SELECT 1")
            return True
        except StoreError as e:
            logger.error(f"Local store unavailable: {e}")
            return False
