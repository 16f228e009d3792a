"""
In-memory document store for development and testing.

Supports:
- Document and collection subscriptions with an initial ``added`` snapshot
- One delivery queue and worker task per subscription
- ``settle()`` to wait until every queued change has been handled
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any, Optional

import structlog

from guardianlink.schemas.common import new_id
from guardianlink.store.base import (
    ChangeEvent,
    ChangeHandler,
    ChangeType,
    DocumentStore,
    Subscription,
)
from guardianlink.store.paths import (
    is_collection_path,
    join_path,
    parent_path,
    require_collection,
    require_document,
)

logger = structlog.get_logger(__name__)

_STOP = object()


class _QueuedSubscription(Subscription):
    """Delivers events to one handler, strictly one at a time."""

    def __init__(self, store: "InMemoryDocumentStore", path: str, handler: ChangeHandler):
        self.path = path
        self._store = store
        self._handler = handler
        self._active = True
        self._queue: asyncio.Queue = asyncio.Queue()
        self._unfinished = 0
        self._worker = asyncio.get_running_loop().create_task(self._run())

    @property
    def active(self) -> bool:
        return self._active

    @property
    def pending(self) -> bool:
        return self._unfinished > 0

    def deliver(self, event: ChangeEvent) -> None:
        if self._active:
            self._unfinished += 1
            self._queue.put_nowait(event)

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._store._detach(self)
        self._unfinished += 1
        self._queue.put_nowait(_STOP)

    async def join(self) -> None:
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                if event is _STOP:
                    return
                if not self._active:
                    continue
                await self._handler(event)
            except Exception:
                logger.exception(
                    "subscription_handler_failed",
                    path=self.path,
                    doc_path=event.path,
                    change=event.type.value,
                )
            finally:
                self._unfinished -= 1
                self._queue.task_done()


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store; documents are deep-copied on the way in and out."""

    def __init__(self):
        # Insertion order doubles as creation order for collection listings.
        self._docs: dict[str, dict[str, Any]] = {}
        self._subscriptions: dict[str, set[_QueuedSubscription]] = {}

    @property
    def subscription_count(self) -> int:
        return sum(len(subs) for subs in self._subscriptions.values())

    def paths(self) -> list[str]:
        return list(self._docs)

    # ── Reads ─────────────────────────────────────────────────────────

    async def get(self, path: str) -> Optional[dict[str, Any]]:
        path = require_document(path)
        data = self._docs.get(path)
        return copy.deepcopy(data) if data is not None else None

    async def list(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        collection = require_collection(collection)
        return [
            (path.rsplit("/", 1)[-1], copy.deepcopy(data))
            for path, data in self._docs.items()
            if parent_path(path) == collection
        ]

    # ── Writes ────────────────────────────────────────────────────────

    async def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        path = require_document(path)
        existing = self._docs.get(path)
        if merge and existing is not None:
            stored = {**existing, **copy.deepcopy(data)}
        else:
            stored = copy.deepcopy(data)
        self._docs[path] = stored
        change = ChangeType.ADDED if existing is None else ChangeType.MODIFIED
        self._publish(ChangeEvent(type=change, path=path, data=stored))

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        collection = require_collection(collection)
        doc_id = new_id()
        await self.set(join_path(collection, doc_id), data)
        return doc_id

    async def delete(self, path: str) -> None:
        path = require_document(path)
        if self._docs.pop(path, None) is None:
            return
        self._publish(ChangeEvent(type=ChangeType.REMOVED, path=path))

    # ── Subscriptions ─────────────────────────────────────────────────

    def subscribe(self, path: str, handler: ChangeHandler) -> Subscription:
        if is_collection_path(path):
            path = require_collection(path)
            snapshot = [
                (doc_path, data) for doc_path, data in self._docs.items()
                if parent_path(doc_path) == path
            ]
        else:
            path = require_document(path)
            snapshot = [(path, self._docs[path])] if path in self._docs else []

        subscription = _QueuedSubscription(self, path, handler)
        self._subscriptions.setdefault(path, set()).add(subscription)
        for doc_path, data in snapshot:
            subscription.deliver(
                ChangeEvent(type=ChangeType.ADDED, path=doc_path, data=copy.deepcopy(data))
            )

        logger.debug("store_subscribed", path=path, initial=len(snapshot))
        return subscription

    def _detach(self, subscription: _QueuedSubscription) -> None:
        subs = self._subscriptions.get(subscription.path)
        if subs is not None:
            subs.discard(subscription)
            if not subs:
                del self._subscriptions[subscription.path]

    def _publish(self, event: ChangeEvent) -> None:
        targets = set(self._subscriptions.get(event.path, ()))
        targets |= self._subscriptions.get(parent_path(event.path), set())
        for subscription in targets:
            data = copy.deepcopy(event.data) if event.data is not None else None
            subscription.deliver(ChangeEvent(type=event.type, path=event.path, data=data))

    async def settle(self, quiet_rounds: int = 3) -> None:
        """
        Wait until all queued changes are handled.

        Handlers may write and queue further changes, or start tasks that do;
        the store counts as settled after ``quiet_rounds`` consecutive loop
        iterations with nothing pending.
        """
        quiet = 0
        while quiet < quiet_rounds:
            busy = [
                sub
                for subs in list(self._subscriptions.values())
                for sub in subs
                if sub.pending
            ]
            if busy:
                quiet = 0
                await asyncio.gather(*(sub.join() for sub in busy))
            else:
                quiet += 1
            await asyncio.sleep(0)

    async def close(self) -> None:
        """Unsubscribe everything and let the worker tasks exit."""
        subscriptions = [sub for subs in self._subscriptions.values() for sub in subs]
        for subscription in subscriptions:
            subscription.unsubscribe()
        for subscription in subscriptions:
            await subscription.join()
