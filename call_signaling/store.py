"""
Signaling store interface and in-memory implementation.

The controller only needs six operations from the document database:
create/replace, partial update, one-shot read, document subscription,
append to an ordered sub-collection, and sub-collection subscription.

Subscription semantics follow real-time document databases:
- a document subscription delivers the current value immediately, then the
  full value after every change (`None` while the document does not exist)
- a collection subscription delivers every entry already present, in append
  order, then each newly appended entry exactly once
"""
from __future__ import annotations

import copy
import itertools
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from logging_setup import get_logger, Component

from .errors import DocumentNotFoundError


logger = get_logger(Component.SIGNALING_STORE)

Unsubscribe = Callable[[], None]
DocumentCallback = Callable[[Optional[Dict[str, Any]]], None]
EntryCallback = Callable[[str, Dict[str, Any]], None]


class _ServerTimestamp:
    """Sentinel resolved to the store's clock on write."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"

    def __deepcopy__(self, memo: Dict[int, Any]) -> "_ServerTimestamp":
        return self


SERVER_TIMESTAMP = _ServerTimestamp()


class DocumentStore(Protocol):
    async def set_document(self, path: str, data: Dict[str, Any]) -> None: ...

    async def update_document(self, path: str, fields: Dict[str, Any]) -> None: ...

    async def get_document(self, path: str) -> Optional[Dict[str, Any]]: ...

    async def subscribe_document(self, path: str, callback: DocumentCallback) -> Unsubscribe: ...

    async def add_to_collection(self, path: str, data: Dict[str, Any]) -> str: ...

    async def subscribe_collection(self, path: str, callback: EntryCallback) -> Unsubscribe: ...


class InMemoryDocumentStore:
    """
    Process-local DocumentStore.

    Callbacks run synchronously inside the write that triggered them, with a
    private copy of the data. A failing callback is logged and does not stop
    delivery to other subscribers.
    """

    def __init__(self, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self._clock = clock
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._collections: Dict[str, List[Tuple[str, Dict[str, Any]]]] = defaultdict(list)
        self._document_watchers: Dict[str, List[DocumentCallback]] = defaultdict(list)
        self._collection_watchers: Dict[str, List[EntryCallback]] = defaultdict(list)
        self._ids = itertools.count(1)

    # --- documents ---

    async def set_document(self, path: str, data: Dict[str, Any]) -> None:
        self._documents[path] = self._resolve(data)
        logger.debug("Document set", path=path, fields=sorted(data))
        self._notify_document(path)

    async def update_document(self, path: str, fields: Dict[str, Any]) -> None:
        if path not in self._documents:
            raise DocumentNotFoundError(f"no document at {path}")
        self._documents[path].update(self._resolve(fields))
        logger.debug("Document updated", path=path, fields=sorted(fields))
        self._notify_document(path)

    async def get_document(self, path: str) -> Optional[Dict[str, Any]]:
        data = self._documents.get(path)
        return copy.deepcopy(data) if data is not None else None

    async def delete_document(self, path: str) -> None:
        if self._documents.pop(path, None) is not None:
            logger.debug("Document deleted", path=path)
            self._notify_document(path)

    async def subscribe_document(self, path: str, callback: DocumentCallback) -> Unsubscribe:
        watchers = self._document_watchers[path]
        watchers.append(callback)
        self._deliver(callback, self._snapshot(path))

        def unsubscribe() -> None:
            if callback in watchers:
                watchers.remove(callback)

        return unsubscribe

    # --- collections ---

    async def add_to_collection(self, path: str, data: Dict[str, Any]) -> str:
        entry_id = f"entry_{next(self._ids)}"
        entry = self._resolve(data)
        self._collections[path].append((entry_id, entry))
        for callback in list(self._collection_watchers[path]):
            self._deliver(callback, entry_id, copy.deepcopy(entry))
        return entry_id

    async def subscribe_collection(self, path: str, callback: EntryCallback) -> Unsubscribe:
        watchers = self._collection_watchers[path]
        watchers.append(callback)
        for entry_id, entry in list(self._collections[path]):
            self._deliver(callback, entry_id, copy.deepcopy(entry))

        def unsubscribe() -> None:
            if callback in watchers:
                watchers.remove(callback)

        return unsubscribe

    def list_collection(self, path: str) -> List[Dict[str, Any]]:
        """All entries of a collection in append order."""
        return [copy.deepcopy(entry) for _, entry in self._collections.get(path, [])]

    def subscriber_count(self, path: str) -> int:
        return len(self._document_watchers.get(path, [])) + len(self._collection_watchers.get(path, []))

    # --- helpers ---

    def _resolve(self, data: Dict[str, Any]) -> Dict[str, Any]:
        resolved = copy.deepcopy(data)
        for key, value in resolved.items():
            if value is SERVER_TIMESTAMP:
                resolved[key] = self._clock()
        return resolved

    def _snapshot(self, path: str) -> Optional[Dict[str, Any]]:
        data = self._documents.get(path)
        return copy.deepcopy(data) if data is not None else None

    def _notify_document(self, path: str) -> None:
        for callback in list(self._document_watchers[path]):
            self._deliver(callback, self._snapshot(path))

    @staticmethod
    def _deliver(callback: Callable[..., None], *args: Any) -> None:
        try:
            callback(*args)
        except Exception as e:
            logger.error(
                "Subscriber callback failed",
                error=str(e),
                error_type=type(e).__name__,
            )
