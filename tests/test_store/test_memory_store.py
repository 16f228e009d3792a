"""
In-Memory Document Store Tests.

Covers:
- CRUD and merge semantics
- Path validation
- Subscriptions: initial snapshot, ordering, unsubscribe
"""

import pytest

from guardianlink.exceptions import ValidationError
from guardianlink.store.base import ChangeType
from guardianlink.store.paths import doc_id, is_collection_path, parent_path


class TestPaths:
    def test_segment_parity(self):
        assert is_collection_path("calls")
        assert is_collection_path("calls/s1/participants")
        assert not is_collection_path("calls/s1")

    def test_parent_and_id(self):
        assert parent_path("calls/s1/participants/u1") == "calls/s1/participants"
        assert doc_id("calls/s1/participants/u1") == "u1"

    def test_parent_of_collection_rejected(self):
        with pytest.raises(ValidationError):
            parent_path("calls")


class TestCrud:
    @pytest.mark.asyncio
    async def test_set_get_merge(self, store):
        await store.set("students/s1", {"name": "Kabir", "marks": 55})
        await store.set("students/s1", {"marks": 61}, merge=True)
        assert await store.get("students/s1") == {"name": "Kabir", "marks": 61}

        await store.set("students/s1", {"marks": 70})
        assert await store.get("students/s1") == {"marks": 70}

    @pytest.mark.asyncio
    async def test_returned_data_is_a_copy(self, store):
        await store.set("students/s1", {"notes": []})
        data = await store.get("students/s1")
        data["notes"].append("leak")
        assert await store.get("students/s1") == {"notes": []}

    @pytest.mark.asyncio
    async def test_add_and_list_in_creation_order(self, store):
        first = await store.add("notifications", {"n": 1})
        second = await store.add("notifications", {"n": 2})
        await store.set("notifications/x/replies/r1", {"nested": True})
        listed = await store.list("notifications")
        assert [doc for doc, _ in listed] == [first, second]

    @pytest.mark.asyncio
    async def test_delete_missing_is_not_an_error(self, store):
        await store.delete("calls/none")
        assert await store.get("calls/none") is None

    @pytest.mark.asyncio
    async def test_document_path_required(self, store):
        with pytest.raises(ValidationError):
            await store.set("students", {"x": 1})


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_initial_snapshot_then_changes(self, store):
        await store.set("calls/s1/participants/a", {"userId": "a"})
        seen = []

        async def handler(event):
            seen.append((event.type, event.doc_id))

        sub = store.subscribe("calls/s1/participants", handler)
        await store.settle()
        assert seen == [(ChangeType.ADDED, "a")]

        await store.set("calls/s1/participants/b", {"userId": "b"})
        await store.set("calls/s1/participants/b", {"userName": "B"}, merge=True)
        await store.delete("calls/s1/participants/a")
        await store.settle()
        assert seen[1:] == [
            (ChangeType.ADDED, "b"),
            (ChangeType.MODIFIED, "b"),
            (ChangeType.REMOVED, "a"),
        ]
        sub.unsubscribe()

    @pytest.mark.asyncio
    async def test_document_subscription(self, store):
        seen = []

        async def handler(event):
            seen.append(event.data)

        store.subscribe("calls/s1/connections/a_b", handler)
        await store.set("calls/s1/connections/a_b", {"offer": {"type": "offer", "sdp": "x"}})
        await store.set("calls/s1/connections/other", {"offer": None})
        await store.settle()
        assert seen == [{"offer": {"type": "offer", "sdp": "x"}}]

    @pytest.mark.asyncio
    async def test_handler_finishes_before_next_event(self, store):
        order = []

        async def handler(event):
            order.append(f"start:{event.doc_id}")
            await store.set("log/" + event.doc_id, {})
            order.append(f"end:{event.doc_id}")

        store.subscribe("items", handler)
        await store.set("items/1", {})
        await store.set("items/2", {})
        await store.settle()
        assert order == ["start:1", "end:1", "start:2", "end:2"]

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self, store):
        seen = []

        async def handler(event):
            seen.append(event.doc_id)

        sub = store.subscribe("items", handler)
        sub.unsubscribe()
        await store.set("items/1", {})
        await store.settle()
        assert seen == []
        assert not sub.active
        assert store.subscription_count == 0

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_subscription(self, store):
        seen = []

        async def handler(event):
            if event.doc_id == "bad":
                raise RuntimeError("boom")
            seen.append(event.doc_id)

        store.subscribe("items", handler)
        await store.set("items/bad", {})
        await store.set("items/good", {})
        await store.settle()
        assert seen == ["good"]
