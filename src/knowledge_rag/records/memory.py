"""In-memory record store."""

from __future__ import annotations

import threading
from typing import Any

from pydantic import BaseModel

from knowledge_rag.records.base import M, RecordStore
from knowledge_rag.records.models import utcnow


def _matches(record: BaseModel, where: dict[str, Any]) -> bool:
    return all(getattr(record, key, None) == value for key, value in where.items())


class InMemoryRecordStore(RecordStore):
    """Thread-safe dict-backed store.

    Records are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._tables: dict[type[BaseModel], dict[str, BaseModel]] = {}
        self._lock = threading.Lock()

    def _table(self, model: type[BaseModel]) -> dict[str, BaseModel]:
        return self._tables.setdefault(model, {})

    def find_one(self, model: type[M], **where: Any) -> M | None:
        with self._lock:
            for record in self._table(model).values():
                if _matches(record, where):
                    return record.model_copy(deep=True)  # type: ignore[return-value]
        return None

    def find_all(self, model: type[M], **where: Any) -> list[M]:
        with self._lock:
            return [
                record.model_copy(deep=True)  # type: ignore[misc]
                for record in self._table(model).values()
                if _matches(record, where)
            ]

    def create(self, record: M) -> M:
        record_id = getattr(record, "id", None)
        if not record_id:
            raise ValueError(f"{type(record).__name__} requires an id")
        with self._lock:
            table = self._table(type(record))
            if record_id in table:
                raise ValueError(f"{type(record).__name__} {record_id} already exists")
            table[record_id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    def update(self, model: type[BaseModel], values: dict[str, Any], **where: Any) -> int:
        changes = dict(values)
        if "updated_at" in model.model_fields and "updated_at" not in changes:
            changes["updated_at"] = utcnow()
        count = 0
        with self._lock:
            table = self._table(model)
            for record_id, record in list(table.items()):
                if _matches(record, where):
                    table[record_id] = record.model_copy(update=changes, deep=True)
                    count += 1
        return count

    def destroy(self, model: type[BaseModel], **where: Any) -> int:
        with self._lock:
            table = self._table(model)
            doomed = [record_id for record_id, record in table.items() if _matches(record, where)]
            for record_id in doomed:
                del table[record_id]
        return len(doomed)
