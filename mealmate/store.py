"""
JSON document store.

All tables live in one JSON file: ``{"<table>": [row, ...], ...}``. Rows are
plain dicts with a string ``id``. Every mutation rewrites the file atomically
(temp file in the same directory, then ``os.replace``), so a failed write
leaves the previous file intact and the in-memory tables unchanged. Callers get copies of rows, never the stored
objects.
"""

import copy
import json
import logging
import os
import tempfile
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger(__name__)

Row = dict[str, Any]
Predicate = Callable[[Row], bool]


class StoreError(Exception):
    """Raised when the data file cannot be read or written."""
    pass


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class JsonStore:
    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = threading.RLock()
        self._data: dict[str, list[Row]] | None = None
        self._transaction_depth = 0
        self._dirty = False

    def _tables(self) -> dict[str, list[Row]]:
        if self._data is None:
            self._data = self._load()
        return self._data

    def _load(self) -> dict[str, list[Row]]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StoreError(f"Invalid JSON in data file {self.path}: {e}")
        except OSError as e:
            raise StoreError(f"Failed to read data file {self.path}: {e}")

        if not isinstance(data, dict) or not all(isinstance(rows, list) for rows in data.values()):
            raise StoreError(f"Data file {self.path} must map table names to lists of rows")
        return data

    def _save(self) -> None:
        if self._transaction_depth > 0:
            self._dirty = True
            return

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_fd, temp_path = tempfile.mkstemp(
                dir=self.path.parent,
                prefix=".mealmate_tmp_",
                suffix=".json"
            )
            try:
                with os.fdopen(temp_fd, 'w') as f:
                    json.dump(self._tables(), f, indent=2)
                os.replace(temp_path, self.path)
            except Exception:
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass
                raise
        except OSError as e:
            raise StoreError(f"Failed to save data to {self.path}: {e}")

        self._dirty = False

    def _rows(self, table: str) -> list[Row]:
        return self._tables().setdefault(table, [])

    def insert(self, table: str, row: Row) -> Row:
        """Add a row, assigning id and timestamps when absent. Returns a copy."""
        with self.transaction():
            row = copy.deepcopy(row)
            now = utc_now()
            row.setdefault("id", str(uuid.uuid4()))
            row.setdefault("created_at", now)
            row.setdefault("updated_at", now)
            self._rows(table).append(row)
            self._save()
            return copy.deepcopy(row)

    def get(self, table: str, row_id: str) -> Row | None:
        with self._lock:
            for row in self._rows(table):
                if row.get("id") == row_id:
                    return copy.deepcopy(row)
            return None

    def select(self, table: str, predicate: Predicate | None = None) -> list[Row]:
        with self._lock:
            return [
                copy.deepcopy(row)
                for row in self._rows(table)
                if predicate is None or predicate(row)
            ]

    def update(self, table: str, row_id: str, changes: Row) -> Row | None:
        """Apply `changes` to a row and bump updated_at. Returns the new row or None."""
        with self.transaction():
            for row in self._rows(table):
                if row.get("id") == row_id:
                    row.update(copy.deepcopy(changes))
                    row["id"] = row_id
                    row["updated_at"] = utc_now()
                    self._save()
                    return copy.deepcopy(row)
            return None

    def delete(self, table: str, row_id: str) -> bool:
        with self.transaction():
            rows = self._rows(table)
            for i, row in enumerate(rows):
                if row.get("id") == row_id:
                    del rows[i]
                    self._save()
                    return True
            return False

    def delete_where(self, table: str, predicate: Predicate) -> int:
        with self.transaction():
            rows = self._rows(table)
            kept = [row for row in rows if not predicate(row)]
            removed = len(rows) - len(kept)
            if removed:
                self._tables()[table] = kept
                self._save()
            return removed

    @contextmanager
    def transaction(self):
        """Group mutations into one write.

        If the body raises, or the final write fails, the in-memory tables go
        back to how they were when the outermost transaction began.
        """
        with self._lock:
            outermost = self._transaction_depth == 0
            snapshot = copy.deepcopy(self._tables()) if outermost else None
            self._transaction_depth += 1
            try:
                try:
                    yield self
                finally:
                    self._transaction_depth -= 1
                if outermost and self._dirty:
                    self._save()
            except Exception:
                if outermost:
                    self._data = snapshot
                    self._dirty = False
                raise
