"""
Document Store — the external persistence dependency.

The core only needs get/set/add/delete/list plus change subscriptions on a
document or a collection. ``InMemoryDocumentStore`` implements the interface
for tests and local runs.
"""

from guardianlink.store.base import (
    ChangeEvent,
    ChangeHandler,
    ChangeType,
    DocumentStore,
    Subscription,
)
from guardianlink.store.memory import InMemoryDocumentStore
from guardianlink.store.paths import (
    doc_id,
    is_collection_path,
    is_document_path,
    join_path,
    parent_path,
)

__all__ = [
    "ChangeEvent",
    "ChangeHandler",
    "ChangeType",
    "DocumentStore",
    "InMemoryDocumentStore",
    "Subscription",
    "doc_id",
    "is_collection_path",
    "is_document_path",
    "join_path",
    "parent_path",
]
