"""
Storage port used by every service, with an in-memory and a YAML backend.

Records are kept as plain dicts keyed by record type and id, so callers
always receive copies. Updates are partial: only the named fields are
written, which lets two sibling matches fill different slots of the same
downstream match without one overwriting the other.
"""
import logging
import os
import threading
import uuid
from contextlib import contextmanager
from enum import Enum
from typing import Dict, List, Optional

import yaml
from filelock import FileLock

from .errors import NotFoundError
from .models import Record

logger = logging.getLogger(__name__)


def new_id() -> str:
    return uuid.uuid4().hex


def _serialize(value):
    return value.value if isinstance(value, Enum) else value


def _sort_records(rows: List[dict], order_by) -> List[dict]:
    # Stable sorts applied from the least significant key backwards.
    for key in reversed(order_by):
        descending = key.startswith('-')
        name = key.lstrip('-')
        rows.sort(key=lambda row: (row.get(name) is None, row.get(name) if row.get(name) is not None else 0),
                  reverse=descending)
    return rows


def _matches(row: dict, criteria: dict) -> bool:
    for key, expected in criteria.items():
        if key.endswith('__in'):
            if row.get(key[:-4]) not in [_serialize(v) for v in expected]:
                return False
        elif row.get(key) != _serialize(expected):
            return False
    return True


class Store:
    """Interface the core expects from durable storage."""

    def insert(self, record):
        raise NotImplementedError

    def insert_many(self, records) -> list:
        raise NotImplementedError

    def get(self, kind, record_id):
        raise NotImplementedError

    def find(self, kind, order_by=None, **criteria) -> list:
        raise NotImplementedError

    def update(self, kind, record_id, **fields):
        raise NotImplementedError

    def delete(self, kind, record_id):
        raise NotImplementedError

    def batch(self):
        raise NotImplementedError

    def require(self, kind, record_id):
        """Like ``get`` but raises ``NotFoundError`` for a missing record."""
        record = self.get(kind, record_id)
        if record is None:
            raise NotFoundError(kind.__name__, record_id)
        return record

    def find_one(self, kind, order_by=None, **criteria):
        found = self.find(kind, order_by=order_by, **criteria)
        return found[0] if found else None


class MemoryStore(Store):
    """Thread-safe in-process store.

    Every operation runs under one re-entrant lock. ``batch()`` holds the
    lock for a group of writes and logs the prior value of each row it
    touches. If the group raises, those rows are put back, so readers see
    either all of the batch or none of it.
    """

    def __init__(self):
        self._tables: Dict[str, Dict[str, dict]] = {}
        self._lock = threading.RLock()
        self._depth = 0
        self._dirty = False
        # (table, id, prior row or None) for every write inside open batches
        self._undo: Optional[List[tuple]] = None

    # Hooks for file-backed subclasses
    def _open(self):
        pass

    def _close(self):
        pass

    def _flush(self):
        pass

    @contextmanager
    def _transaction(self, write: bool = False, snapshot: bool = False):
        with self._lock:
            outer = self._depth == 0
            if outer:
                self._open()
            self._depth += 1
            owns_log = snapshot and self._undo is None
            if owns_log:
                self._undo = []
            mark = len(self._undo) if snapshot else None
            try:
                yield
                if write:
                    self._dirty = True
            except Exception:
                if mark is not None:
                    self._rollback(mark)
                raise
            finally:
                if owns_log:
                    self._undo = None
                self._depth -= 1
                if outer:
                    try:
                        if self._dirty:
                            self._flush()
                    finally:
                        self._dirty = False
                        self._close()

    def _rollback(self, mark: int):
        """Undo the writes logged after ``mark``, newest first."""
        for name, record_id, prior in reversed(self._undo[mark:]):
            table = self._tables.setdefault(name, {})
            if prior is None:
                table.pop(record_id, None)
            else:
                table[record_id] = prior
        del self._undo[mark:]

    def _remember(self, kind, record_id):
        if self._undo is None:
            return
        prior = self._table(kind).get(record_id)
        self._undo.append((kind.__name__, record_id, dict(prior) if prior is not None else None))

    def _table(self, kind) -> Dict[str, dict]:
        return self._tables.setdefault(kind.__name__, {})

    def batch(self):
        """Group writes so they become visible together."""
        return self._transaction(write=True, snapshot=True)

    def insert(self, record):
        with self._transaction(write=True):
            if record.id is None:
                record.id = new_id()
            table = self._table(type(record))
            if record.id in table:
                raise ValueError(f'{type(record).__name__} {record.id} already exists')
            self._remember(type(record), record.id)
            # Derived values such as Leg.status are not stored
            table[record.id] = Record.to_dict(record)
            return type(record).from_dict(table[record.id])

    def insert_many(self, records) -> list:
        with self.batch():
            return [self.insert(record) for record in records]

    def get(self, kind, record_id) -> Optional[object]:
        with self._transaction():
            row = self._table(kind).get(record_id)
            return kind.from_dict(row) if row is not None else None

    def find(self, kind, order_by=None, **criteria) -> list:
        with self._transaction():
            rows = [dict(row) for row in self._table(kind).values() if _matches(row, criteria)]
        rows = _sort_records(rows, order_by or kind.ordering)
        return [kind.from_dict(row) for row in rows]

    def update(self, kind, record_id, **fields):
        unknown = set(fields) - set(kind.fields)
        if unknown or 'id' in fields:
            raise ValueError(f'Cannot update {kind.__name__} fields: {sorted(unknown | ({"id"} & set(fields)))}')
        with self._transaction(write=True):
            row = self._table(kind).get(record_id)
            if row is None:
                raise NotFoundError(kind.__name__, record_id)
            self._remember(kind, record_id)
            for name, value in fields.items():
                row[name] = _serialize(value)
            return kind.from_dict(row)

    def delete(self, kind, record_id):
        with self._transaction(write=True):
            if record_id not in self._table(kind):
                raise NotFoundError(kind.__name__, record_id)
            self._remember(kind, record_id)
            row = self._table(kind).pop(record_id)
            return kind.from_dict(row)


class YamlStore(MemoryStore):
    """Store persisted to a single YAML file guarded by a file lock.

    The file is re-read at the start of every outermost operation and
    written back at its end, so several processes can share it.
    """

    def __init__(self, path: str, lock_timeout: float = 10):
        super().__init__()
        self.path = path
        self._file_lock = FileLock(path + '.lock', timeout=lock_timeout)

    def _open(self):
        self._file_lock.acquire()
        try:
            self._tables = self._load()
        except Exception:
            self._file_lock.release()
            raise

    def _close(self):
        self._file_lock.release()

    def _load(self) -> Dict[str, Dict[str, dict]]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
        return data or {}

    def _flush(self):
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = self.path + '.tmp'
        with open(tmp_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(self._tables, f, default_flow_style=False)
        os.replace(tmp_path, self.path)
        logger.debug('Saved store to %s', self.path)
