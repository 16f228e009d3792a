"""
Document store interface.

Change delivery contract:
- each subscription has its own ordered queue; a handler runs to completion
  before the same subscription's next event is delivered
- there is no ordering between different subscriptions
- a new subscription first receives the existing document(s) as ``added``
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Awaitable, Callable, Optional


class ChangeType(StrEnum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class ChangeEvent:
    """One change to one document. ``data`` is None for removals."""
    type: ChangeType
    path: str
    data: Optional[dict[str, Any]] = field(default=None)

    @property
    def doc_id(self) -> str:
        return self.path.rsplit("/", 1)[-1]


ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]


class Subscription(ABC):
    """Handle returned by ``DocumentStore.subscribe``."""

    @property
    @abstractmethod
    def active(self) -> bool:
        pass

    @abstractmethod
    def unsubscribe(self) -> None:
        """Stop delivery. Queued events that were not yet handled are dropped."""
        pass


class DocumentStore(ABC):
    """Abstract document store with change subscriptions."""

    @abstractmethod
    async def get(self, path: str) -> Optional[dict[str, Any]]:
        """Read one document; None when it does not exist."""
        pass

    @abstractmethod
    async def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        """Write a document. ``merge`` updates only the given top-level fields."""
        pass

    @abstractmethod
    async def add(self, collection: str, data: dict[str, Any]) -> str:
        """Append a document with a generated id and return that id."""
        pass

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Delete a document. Deleting a missing document is not an error."""
        pass

    @abstractmethod
    async def list(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        """All (doc_id, data) pairs of a collection, in creation order."""
        pass

    @abstractmethod
    def subscribe(self, path: str, handler: ChangeHandler) -> Subscription:
        """Listen to a document path or a collection path."""
        pass
