"""Abstract record store.

The engine persists knowledge bases, documents, segments and ledger
entries through this narrow CRUD interface.  Plugging in a relational
backend only requires subclassing :class:`RecordStore` and implementing
the five abstract methods.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, TypeVar

from pydantic import BaseModel

M = TypeVar("M", bound=BaseModel)


class RecordStore(ABC):
    """Backend-agnostic record storage.

    ``where`` keyword arguments are equality filters on model attributes.
    """

    @abstractmethod
    def find_one(self, model: type[M], **where: Any) -> M | None:
        """Return the first record of *model* matching *where*, or ``None``."""
        ...

    @abstractmethod
    def find_all(self, model: type[M], **where: Any) -> list[M]:
        """Return every record of *model* matching *where* in insertion order."""
        ...

    @abstractmethod
    def create(self, record: M) -> M:
        """Persist *record* and return the stored copy."""
        ...

    @abstractmethod
    def update(self, model: type[BaseModel], values: dict[str, Any], **where: Any) -> int:
        """Apply *values* to every matching record; return the number updated."""
        ...

    @abstractmethod
    def destroy(self, model: type[BaseModel], **where: Any) -> int:
        """Delete every matching record; return the number deleted."""
        ...
