"""Progress events published while documents are being embedded."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from typing import Any

from knowledge_rag.records.models import Document, to_event_payload

logger = logging.getLogger(__name__)

#: ``subscriber(knowledge_base_id, event_type, payload)``; may be sync or async.
Subscriber = Callable[[str, str, dict[str, Any]], Any]

EVENT_TYPES = ("change", "complete", "error")


class ProgressEvents:
    """Registry of progress subscribers.

    A failing subscriber is logged and never interrupts the pipeline.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register *subscriber*; the returned callable unsubscribes it."""
        self._subscribers.append(subscriber)

        def _unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return _unsubscribe

    async def publish(self, knowledge_base_id: str, event_type: str, document: Document) -> None:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type {event_type!r}")

        payload = {"eventType": event_type, "documentId": document.id, **to_event_payload(document)}
        for subscriber in list(self._subscribers):
            try:
                result = subscriber(knowledge_base_id, event_type, payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Progress subscriber failed for %s event of document %s", event_type, document.id
                )
