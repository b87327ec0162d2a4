import copy
import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

import config
from errors import StorageError

logger = logging.getLogger(__name__)

TABLES = ("users", "projects", "project_members", "tasks")

Record = Dict[str, Any]
Predicate = Callable[[Record], bool]


def _matches(record: Record, predicate: Optional[Predicate], equals: Dict[str, Any]) -> bool:
    if any(record.get(key) != value for key, value in equals.items()):
        return False
    return predicate is None or predicate(record)


class Tables:
    """Record operations over an in-memory snapshot of every table."""

    def __init__(self, data: Dict[str, List[Record]]):
        self.data = data
        self.dirty = False

    def _rows(self, table: str) -> List[Record]:
        if table not in self.data:
            raise StorageError(f"Unknown table: {table}")
        return self.data[table]

    def insert(self, table: str, record: Record) -> Record:
        self._rows(table).append(copy.deepcopy(record))
        self.dirty = True
        return record

    def select_where(self, table: str, predicate: Optional[Predicate] = None, **equals) -> List[Record]:
        return [copy.deepcopy(r) for r in self._rows(table) if _matches(r, predicate, equals)]

    def get(self, table: str, record_id: str) -> Optional[Record]:
        rows = self.select_where(table, id=record_id)
        return rows[0] if rows else None

    def count(self, table: str, predicate: Optional[Predicate] = None, **equals) -> int:
        return sum(1 for r in self._rows(table) if _matches(r, predicate, equals))

    def update(self, table: str, record_id: str, patch: Record) -> Optional[Record]:
        for row in self._rows(table):
            if row.get("id") == record_id:
                row.update(copy.deepcopy(patch))
                self.dirty = True
                return copy.deepcopy(row)
        return None

    def delete_where(self, table: str, predicate: Optional[Predicate] = None, **equals) -> int:
        rows = self._rows(table)
        kept = [r for r in rows if not _matches(r, predicate, equals)]
        removed = len(rows) - len(kept)
        rows[:] = kept
        self.dirty = self.dirty or removed > 0
        return removed


class Storage:
    """
    Table store guarded by a single lock.

    Every public call runs as its own transaction; ``transaction()`` groups
    several calls so they observe one snapshot and persist in a single write.
    Subclasses provide ``_load`` and ``_dump``.
    """

    def __init__(self, timeout: float = None):
        self.timeout = config.STORAGE_TIMEOUT if timeout is None else timeout
        self._lock = threading.RLock()

    def _load(self) -> Dict[str, List[Record]]:
        raise NotImplementedError

    def _dump(self, data: Dict[str, List[Record]]) -> None:
        raise NotImplementedError

    @contextmanager
    def transaction(self) -> Iterator[Tables]:
        if not self._lock.acquire(timeout=self.timeout):
            logger.error("Timed out waiting for the storage lock")
            raise StorageError()
        try:
            data = self._load()
            for table in TABLES:
                data.setdefault(table, [])
            tables = Tables(data)
            yield tables
            if tables.dirty:
                self._dump(tables.data)
        finally:
            self._lock.release()

    def insert(self, table: str, record: Record) -> Record:
        with self.transaction() as tx:
            return tx.insert(table, record)

    def select_where(self, table: str, predicate: Optional[Predicate] = None, **equals) -> List[Record]:
        with self.transaction() as tx:
            return tx.select_where(table, predicate, **equals)

    def get(self, table: str, record_id: str) -> Optional[Record]:
        with self.transaction() as tx:
            return tx.get(table, record_id)

    def count(self, table: str, predicate: Optional[Predicate] = None, **equals) -> int:
        with self.transaction() as tx:
            return tx.count(table, predicate, **equals)

    def update(self, table: str, record_id: str, patch: Record) -> Optional[Record]:
        with self.transaction() as tx:
            return tx.update(table, record_id, patch)

    def delete_where(self, table: str, predicate: Optional[Predicate] = None, **equals) -> int:
        with self.transaction() as tx:
            return tx.delete_where(table, predicate, **equals)


class MemoryStorage(Storage):
    def __init__(self, timeout: float = None):
        super().__init__(timeout)
        self._data: Dict[str, List[Record]] = {table: [] for table in TABLES}

    def _load(self) -> Dict[str, List[Record]]:
        return copy.deepcopy(self._data)

    def _dump(self, data: Dict[str, List[Record]]) -> None:
        self._data = data


class JSONStorage(Storage):
    def __init__(self, storage_dir: str = "data", timeout: float = None):
        super().__init__(timeout)
        self.storage_dir = Path(storage_dir)
        self.db_file = self.storage_dir / "db.json"

    def _load(self) -> Dict[str, List[Record]]:
        if not self.db_file.exists():
            return {table: [] for table in TABLES}
        try:
            with open(self.db_file, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read {self.db_file}: {e}")
            raise StorageError() from e
        if not isinstance(data, dict) or not all(isinstance(data.get(t, []), list) for t in TABLES):
            logger.error(f"Unexpected layout in {self.db_file}")
            raise StorageError()
        return data

    def _dump(self, data: Dict[str, List[Record]]) -> None:
        tmp_file = self.db_file.with_suffix(".tmp")
        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_file, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_file, self.db_file)
        except (OSError, TypeError) as e:
            logger.error(f"Failed to write {self.db_file}: {e}")
            raise StorageError() from e


def build_storage() -> Storage:
    if config.STORAGE_BACKEND == "memory":
        return MemoryStorage()
    return JSONStorage(config.DATA_DIR)
