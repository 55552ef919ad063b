"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). All monetary values stored as Decimal strings.

Units of work run inside ``atomic()``: the store is held exclusively for the
duration of the unit, and every write made inside it is undone if the unit
raises. Readers outside the unit therefore never observe half-applied work.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Tuple, Union, get_type_hints
from decimal import Decimal
from datetime import datetime
from enum import Enum
import sqlite3
import json
import threading
import typing
from dataclasses import dataclass, fields
from pathlib import Path
from contextlib import contextmanager

from .errors import ContentionError


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {f.name: _encode_value(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary, restoring Decimal, datetime and Enum fields"""
        hints = _record_hints(cls)
        kwargs = {}
        for f in fields(cls):
            if f.name not in data:
                continue
            kwargs[f.name] = _decode_value(data[f.name], hints.get(f.name))
        return cls(**kwargs)


_HINT_CACHE: Dict[type, Dict[str, Any]] = {}


def _record_hints(cls: type) -> Dict[str, Any]:
    if cls not in _HINT_CACHE:
        _HINT_CACHE[cls] = get_type_hints(cls)
    return _HINT_CACHE[cls]


def _encode_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_encode_value(v) for v in value]
    return value


def _decode_value(value: Any, hint: Any) -> Any:
    if value is None or hint is None:
        return value

    # Unwrap Optional[X]
    if typing.get_origin(hint) is Union:
        args = [a for a in typing.get_args(hint) if a is not type(None)]
        if len(args) == 1:
            hint = args[0]

    if hint is Decimal:
        return Decimal(value)
    if hint is datetime:
        return datetime.fromisoformat(value) if isinstance(value, str) else value
    if isinstance(hint, type) and issubclass(hint, Enum):
        return hint(value)
    return value


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    def __init__(self):
        self._lock = threading.RLock()
        self._tx_depth = 0

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table in insertion order"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters, in insertion order"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    @abstractmethod
    def begin_transaction(self) -> None:
        """Start a transaction"""
        pass

    @abstractmethod
    def commit(self) -> None:
        """Commit current transaction"""
        pass

    @abstractmethod
    def rollback(self) -> None:
        """Undo every write made since begin_transaction"""
        pass

    @property
    def in_transaction(self) -> bool:
        return self._tx_depth > 0

    @contextmanager
    def atomic(self, timeout: Optional[float] = None):
        """
        Context manager for atomic operations

        Nested calls join the outermost unit; only the outermost commits or
        rolls back.

        Args:
            timeout: Maximum seconds to wait for the store; None waits indefinitely

        Raises:
            ContentionError: If the store could not be acquired within timeout
        """
        if timeout is None:
            acquired = self._lock.acquire()
        else:
            acquired = self._lock.acquire(timeout=timeout)
        if not acquired:
            raise ContentionError("Timed out waiting for the ledger store")

        try:
            outermost = self._tx_depth == 0
            if outermost:
                self.begin_transaction()
            self._tx_depth += 1
            try:
                yield self
            except BaseException:
                self._tx_depth -= 1
                if outermost:
                    self.rollback()
                raise
            else:
                self._tx_depth -= 1
                if outermost:
                    self.commit()
        finally:
            self._lock.release()


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        super().__init__()
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        # Prior state of each (table, id) touched inside the open transaction
        self._undo: Optional[Dict[Tuple[str, str], Optional[Dict[str, Any]]]] = None

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    def _remember(self, table: str, record_id: str) -> None:
        if self._undo is not None and (table, record_id) not in self._undo:
            self._undo[(table, record_id)] = self._data[table].get(record_id)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            self._remember(table, record_id)
            # Deep copy to prevent external mutation
            self._data[table][record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return json.loads(json.dumps(record))
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [json.loads(json.dumps(record)) for record in self._data[table].values()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                self._remember(table, record_id)
                del self._data[table][record_id]
                return True
            return False

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            results = []
            for record in self._data[table].values():
                if all(key in record and record[key] == value for key, value in filters.items()):
                    results.append(json.loads(json.dumps(record)))
            return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass

    def begin_transaction(self) -> None:
        with self._lock:
            if self._undo is None:
                self._undo = {}

    def commit(self) -> None:
        with self._lock:
            self._undo = None

    def rollback(self) -> None:
        with self._lock:
            if self._undo is None:
                return
            for (table, record_id), previous in self._undo.items():
                if previous is None:
                    self._data[table].pop(record_id, None)
                else:
                    self._data[table][record_id] = previous
            self._undo = None


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        super().__init__()
        self.db_path = str(db_path)
        # Set isolation_level to 'DEFERRED' to enable manual transaction control
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._tables: set = set()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    def _maybe_commit(self) -> None:
        # Writes inside atomic() wait for the outermost commit
        if not self.in_transaction:
            self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        with self._lock:
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._connection.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
            self._maybe_commit()
            self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self._ensure_table(table)

            data_json = json.dumps(data, default=str)
            now = data.get('updated_at') or data.get('created_at') or ""
            created = data.get('created_at') or now

            # Upsert keeps the original rowid, so insertion order survives updates
            self._connection.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
            """, (record_id, data_json, str(created), str(now)))

            self._maybe_commit()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY rowid
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))
            self._maybe_commit()
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using json_extract"""
        with self._lock:
            self._ensure_table(table)

            conditions = []
            params: List[Any] = []
            for key, value in filters.items():
                if value is None:
                    conditions.append("json_extract(data, ?) IS NULL")
                    params.append(f"$.{key}")
                else:
                    conditions.append("json_extract(data, ?) = ?")
                    params.extend([f"$.{key}", value])

            where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} {where_clause} ORDER BY rowid
            """, params)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        # SQLite with isolation_level='DEFERRED' opens the transaction on first write
        pass

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            self._connection.commit()

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            self._connection.rollback()
            # Tables created inside the rolled-back unit no longer exist
            self._tables.clear()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class StorageManager:
    """Typed record access on top of a storage backend"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def save_record(self, record: StorageRecord, table: str) -> None:
        """Save a StorageRecord to storage"""
        self.storage.save(table, record.id, record.to_dict())

    def load_record(self, record_type: type, table: str, record_id: str) -> Optional[StorageRecord]:
        """Load and convert to StorageRecord"""
        data = self.storage.load(table, record_id)
        if data:
            return record_type.from_dict(data)
        return None

    def load_all_records(self, record_type: type, table: str) -> List[StorageRecord]:
        """Load all records and convert to StorageRecord objects"""
        return [record_type.from_dict(data) for data in self.storage.load_all(table)]

    def find_records(self, record_type: type, table: str, filters: Dict[str, Any]) -> List[StorageRecord]:
        """Find records and convert to StorageRecord objects"""
        return [record_type.from_dict(data) for data in self.storage.find(table, filters)]

    def find_one(self, record_type: type, table: str, filters: Dict[str, Any]) -> Optional[StorageRecord]:
        found = self.storage.find(table, filters)
        if found:
            return record_type.from_dict(found[0])
        return None

    def delete_record(self, table: str, record_id: str) -> bool:
        return self.storage.delete(table, record_id)

    def close(self) -> None:
        """Close storage backend"""
        self.storage.close()
