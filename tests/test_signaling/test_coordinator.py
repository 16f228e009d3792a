"""
Call Signaling Coordinator Tests.

Covers:
- Pair key symmetry and offerer election
- Full offer/answer handshake through the store
- Idempotent remote description application
- Candidate buffering until the remote description is applied, including
  candidates that arrive while it is being applied
- Peer teardown on failed connections
- Leave and last-participant garbage collection, also mid-handshake
- Stale connection cleanup on rejoin
- Media acquisition failures
"""

import asyncio

import pytest
from hypothesis import given, settings as hyp_settings
from hypothesis import strategies as st

from fakes import FakeMediaProvider, FakePeerFactory, NotAllowedError, NotFoundError
from guardianlink.auth.rbac import Actor, Role
from guardianlink.exceptions import (
    InvalidTransitionError,
    MediaAcquisitionError,
    MediaErrorCause,
    PermissionDeniedError,
    StoreError,
)
from guardianlink.schemas.meeting import Meeting, MeetingStatus
from guardianlink.signaling.coordinator import (
    CallSignalingCoordinator,
    CallStatus,
    is_offerer,
    pair_key,
)
from guardianlink.store.base import ChangeEvent, ChangeType
from guardianlink.store.memory import InMemoryDocumentStore

SESSION = "meeting_stu-1_abc"
ALICE = Actor(user_id="alice", role=Role.MENTOR, name="Alice")
BOB = Actor(user_id="bob", role=Role.STUDENT, email="bob@student.edu", name="Bob")


def _make_meeting(status: MeetingStatus = MeetingStatus.ACCEPTED, **overrides) -> Meeting:
    fields = {
        "date": "2026-03-10",
        "status": status,
        "call_session_id": SESSION,
        "invitees": [Role.STUDENT],
    }
    fields.update(overrides)
    return Meeting(**fields)


def _coordinator(store, provider=None, factory=None) -> CallSignalingCoordinator:
    return CallSignalingCoordinator(
        store,
        provider or FakeMediaProvider(),
        factory or FakePeerFactory(),
        ice_servers=["stun:stun.example.org:3478"],
    )


async def _settle(store, *sessions):
    for _ in range(3):
        for session in sessions:
            await session.drain()
        await store.settle()


async def _spin(rounds: int = 20):
    # settle() would wait on a gated handler; yield to the loop instead.
    for _ in range(rounds):
        await asyncio.sleep(0)


# ── Pair keys ────────────────────────────────────────────────────────────


class TestPairKey:
    def test_sorted_and_joined(self):
        assert pair_key("bob", "alice") == "alice_bob"
        assert pair_key("alice", "bob") == "alice_bob"

    @given(a=st.text(min_size=1, max_size=12), b=st.text(min_size=1, max_size=12))
    @hyp_settings(max_examples=100)
    def test_symmetric(self, a, b):
        assert pair_key(a, b) == pair_key(b, a)

    @given(a=st.text(min_size=1, max_size=12), b=st.text(min_size=1, max_size=12))
    @hyp_settings(max_examples=100)
    def test_exactly_one_offerer(self, a, b):
        if a != b:
            assert is_offerer(a, b) != is_offerer(b, a)


# ── Handshake ────────────────────────────────────────────────────────────


class TestHandshake:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("first,second", [(ALICE, BOB), (BOB, ALICE)])
    async def test_one_connection_doc_for_either_join_order(self, store, first, second):
        coord_1, coord_2 = _coordinator(store), _coordinator(store)
        s1 = await coord_1.join(_make_meeting(), first)
        s2 = await coord_2.join(_make_meeting(), second)
        await _settle(store, s1, s2)

        connections = await store.list(f"calls/{SESSION}/connections")
        assert [pair for pair, _ in connections] == ["alice_bob"]
        doc = connections[0][1]
        assert doc["offer"]["type"] == "offer"
        assert doc["answer"]["type"] == "answer"

        by_user = {s1.user_id: s1, s2.user_id: s2}
        alice_link = by_user["alice"].peers["bob"]
        bob_link = by_user["bob"].peers["alice"]
        assert alice_link.offerer and not bob_link.offerer
        assert alice_link.pair == bob_link.pair

        alice_pc, bob_pc = alice_link.pc, bob_link.pc
        assert [d.type for d in alice_pc.remote_descriptions] == ["answer"]
        assert [d.type for d in bob_pc.remote_descriptions] == ["offer"]
        assert bob_pc.log[:3] == ["set_remote:offer", "create_answer", "set_local:answer"]
        assert alice_pc.ice_servers == ["stun:stun.example.org:3478"]

        await coord_1.leave_all()
        await coord_2.leave_all()

    @pytest.mark.asyncio
    async def test_candidates_exchanged(self, store):
        coord_a, coord_b = _coordinator(store), _coordinator(store)
        sa = await coord_a.join(_make_meeting(), ALICE)
        sb = await coord_b.join(_make_meeting(), BOB)
        await _settle(store, sa, sb)

        alice_pc, bob_pc = sa.peers["bob"].pc, sb.peers["alice"].pc
        alice_pc.emit_candidate({"candidate": "cand-a1", "sdpMid": "0", "sdpMLineIndex": 0})
        bob_pc.emit_candidate({"candidate": "cand-b1", "sdpMid": "0", "sdpMLineIndex": 0})
        alice_pc.emit_candidate(None)
        await _settle(store, sa, sb)

        offer_candidates = await store.list(f"calls/{SESSION}/connections/alice_bob/offerCandidates")
        assert [d["candidate"] for _, d in offer_candidates] == ["cand-a1"]
        assert offer_candidates[0][1]["sdpMLineIndex"] == 0
        assert [c.candidate for c in bob_pc.added_candidates] == ["cand-a1"]
        assert [c.candidate for c in alice_pc.added_candidates] == ["cand-b1"]

        await coord_a.leave_all()
        await coord_b.leave_all()

    @pytest.mark.asyncio
    async def test_answer_applied_once(self, store):
        coord_a, coord_b = _coordinator(store), _coordinator(store)
        sa = await coord_a.join(_make_meeting(), ALICE)
        sb = await coord_b.join(_make_meeting(), BOB)
        await _settle(store, sa, sb)

        link = sa.peers["bob"]
        doc = await store.get(f"calls/{SESSION}/connections/alice_bob")
        event = ChangeEvent(
            type=ChangeType.MODIFIED,
            path=f"calls/{SESSION}/connections/alice_bob",
            data=doc,
        )
        await link._on_connection_doc(event)
        await store.set(f"calls/{SESSION}/connections/alice_bob", {"answer": doc["answer"]}, merge=True)
        await _settle(store, sa, sb)

        assert len(link.pc.remote_descriptions) == 1
        assert len(sb.peers["alice"].pc.remote_descriptions) == 1

        await coord_a.leave_all()
        await coord_b.leave_all()


class TestCandidateBuffering:
    @pytest.mark.asyncio
    async def test_candidates_before_offer_are_buffered(self, store):
        # Alice's side is simulated directly in the store.
        base = f"calls/{SESSION}"
        await store.set(f"{base}/participants/alice", {"userId": "alice", "userName": "Alice"})
        await store.add(
            f"{base}/connections/alice_bob/offerCandidates",
            {"candidate": "early-1", "sdpMid": "0", "sdpMLineIndex": 0},
        )

        coord = _coordinator(store)
        sb = await coord.join(_make_meeting(), BOB)
        await _settle(store, sb)

        link = sb.peers["alice"]
        assert not link.offerer
        assert not link.remote_description_applied
        assert link.buffered_candidates == 1
        assert link.pc.added_candidates == []

        await store.set(f"{base}/connections/alice_bob", {"offer": {"type": "offer", "sdp": "v=0"}})
        await _settle(store, sb)

        assert link.remote_description_applied
        assert link.buffered_candidates == 0
        assert link.pc.log.index("set_remote:offer") < link.pc.log.index("add_candidate:early-1")
        answer = (await store.get(f"{base}/connections/alice_bob"))["answer"]
        assert answer["type"] == "answer"

        await coord.leave_all()

    @pytest.mark.asyncio
    async def test_duplicate_candidate_delivery_added_once(self, store):
        base = f"calls/{SESSION}"
        await store.set(f"{base}/participants/alice", {"userId": "alice"})

        coord = _coordinator(store)
        sb = await coord.join(_make_meeting(), BOB)
        await store.set(f"{base}/connections/alice_bob", {"offer": {"type": "offer", "sdp": "v=0"}})
        await _settle(store, sb)

        link = sb.peers["alice"]
        event = ChangeEvent(
            type=ChangeType.ADDED,
            path=f"{base}/connections/alice_bob/offerCandidates/c1",
            data={"candidate": "dup"},
        )
        await link._on_remote_candidate(event)
        await link._on_remote_candidate(event)
        assert [c.candidate for c in link.pc.added_candidates] == ["dup"]

        await coord.leave_all()

    @pytest.mark.asyncio
    async def test_candidate_during_remote_description_is_buffered(self, store):
        base = f"calls/{SESSION}"
        await store.set(f"{base}/participants/alice", {"userId": "alice", "userName": "Alice"})
        gate = asyncio.Event()
        coord = _coordinator(store, factory=FakePeerFactory({"set_remote_description": gate}))
        sb = await coord.join(_make_meeting(), BOB)
        await _settle(store, sb)
        link = sb.peers["alice"]

        await store.set(f"{base}/connections/alice_bob", {"offer": {"type": "offer", "sdp": "v=0"}})
        await _spin()
        assert link.pc.log == ["set_remote:offer"]

        await store.add(
            f"{base}/connections/alice_bob/offerCandidates",
            {"candidate": "mid-1", "sdpMid": "0", "sdpMLineIndex": 0},
        )
        await _spin()
        assert not link.remote_description_applied
        assert link.buffered_candidates == 1
        assert link.pc.added_candidates == []

        gate.set()
        await _settle(store, sb)
        assert link.remote_description_applied
        assert link.buffered_candidates == 0
        assert link.pc.log.index("set_remote:offer") < link.pc.log.index("add_candidate:mid-1")
        assert [c.candidate for c in link.pc.added_candidates] == ["mid-1"]

        await coord.leave_all()


# ── Peer lifecycle ───────────────────────────────────────────────────────


class TestPeerLifecycle:
    @pytest.mark.asyncio
    async def test_failed_connection_tears_down_peer(self, store):
        coord_a, coord_b = _coordinator(store), _coordinator(store)
        sa = await coord_a.join(_make_meeting(), ALICE)
        sb = await coord_b.join(_make_meeting(), BOB)
        await _settle(store, sa, sb)

        pc = sa.peers["bob"].pc
        pc.deliver_track("bob-stream")
        assert sa.status == CallStatus.CONNECTED
        assert sa.remote_streams == {"bob": "bob-stream"}

        pc.set_state("failed")
        await _settle(store, sa, sb)
        assert "bob" not in sa.peers
        assert sa.remote_streams == {}
        assert pc.closed
        assert sa.status == CallStatus.WAITING

        await coord_a.leave_all()
        await coord_b.leave_all()

    @pytest.mark.asyncio
    async def test_remote_leave_removes_peer(self, store):
        coord_a, coord_b = _coordinator(store), _coordinator(store)
        sa = await coord_a.join(_make_meeting(), ALICE)
        sb = await coord_b.join(_make_meeting(), BOB)
        await _settle(store, sa, sb)
        bob_pc = sb.peers["alice"].pc

        await coord_a.leave(sa)
        await _settle(store, sb)

        assert sb.peers == {}
        assert bob_pc.closed
        assert await store.get(f"calls/{SESSION}") is not None

        await coord_b.leave(sb)

    @pytest.mark.asyncio
    async def test_toggle_mute_and_camera(self, store):
        coord = _coordinator(store)
        session = await coord.join(_make_meeting(), ALICE)
        tracks = {t.kind: t for t in session.local_stream.tracks}

        assert session.toggle_mute() is True
        assert tracks["audio"].enabled is False
        assert tracks["video"].enabled is True

        assert session.toggle_camera() is True
        assert tracks["video"].enabled is False

        assert session.toggle_mute() is False
        assert tracks["audio"].enabled is True

        await coord.leave(session)


# ── Leave & cleanup ──────────────────────────────────────────────────────


class TestLeave:
    @pytest.mark.asyncio
    async def test_last_participant_removes_everything(self, store):
        coord_a, coord_b = _coordinator(store), _coordinator(store)
        sa = await coord_a.join(_make_meeting(), ALICE)
        sb = await coord_b.join(_make_meeting(), BOB)
        await _settle(store, sa, sb)
        sa.peers["bob"].pc.emit_candidate({"candidate": "a1"})
        sb.peers["alice"].pc.emit_candidate({"candidate": "b1"})
        await _settle(store, sa, sb)
        assert any("offerCandidates" in p for p in store.paths())
        assert any("answerCandidates" in p for p in store.paths())

        await coord_a.leave(sa)
        await _settle(store, sb)
        assert await store.get(f"calls/{SESSION}/connections/alice_bob") is not None

        await coord_b.leave(sb)
        assert store.paths() == []
        assert store.subscription_count == 0
        assert coord_a.active_sessions == [] and coord_b.active_sessions == []

    @pytest.mark.asyncio
    async def test_leave_during_offer_leaves_nothing_behind(self, store):
        gate = asyncio.Event()
        factory_a = FakePeerFactory({"create_offer": gate})
        coord_a, coord_b = _coordinator(store, factory=factory_a), _coordinator(store)
        sa = await coord_a.join(_make_meeting(), ALICE)
        sb = await coord_b.join(_make_meeting(), BOB)
        await _spin()
        alice_pc = factory_a.created[0]
        assert alice_pc.log == ["create_offer"]

        await coord_b.leave(sb)
        await coord_a.leave(sa)
        gate.set()
        await _spin()
        await store.settle()

        assert "set_local:offer" not in alice_pc.log
        assert alice_pc.closed
        assert store.paths() == []
        assert store.subscription_count == 0

    @pytest.mark.asyncio
    async def test_rejoin_clears_stale_connection(self, store):
        base = f"calls/{SESSION}"
        await store.set(f"{base}/participants/alice", {"userId": "alice", "userName": "Alice"})
        await store.set(f"{base}/connections/alice_bob", {"offer": {"type": "offer", "sdp": "v=old"}})
        await store.add(f"{base}/connections/alice_bob/offerCandidates", {"candidate": "old-1"})
        await store.set(f"{base}/connections/alice_carol", {"offer": {"type": "offer", "sdp": "v=c"}})

        coord = _coordinator(store)
        sb = await coord.join(_make_meeting(), BOB)
        await _settle(store, sb)
        link = sb.peers["alice"]
        assert not link.remote_description_applied
        assert link.buffered_candidates == 0
        assert await store.get(f"{base}/connections/alice_carol") is not None
        assert not any(p.startswith(f"{base}/connections/alice_bob") for p in store.paths())

        await store.set(f"{base}/connections/alice_bob", {"offer": {"type": "offer", "sdp": "v=new"}})
        await _settle(store, sb)
        assert [d.sdp for d in link.pc.remote_descriptions] == ["v=new"]
        assert link.pc.added_candidates == []

        await coord.leave_all()

    @pytest.mark.asyncio
    async def test_leave_stops_media_and_closes_peers(self, store):
        provider = FakeMediaProvider()
        coord_a, coord_b = _coordinator(store, provider), _coordinator(store)
        sa = await coord_a.join(_make_meeting(), ALICE)
        sb = await coord_b.join(_make_meeting(), BOB)
        await _settle(store, sa, sb)
        pc = sa.peers["bob"].pc

        await coord_a.leave(sa)
        assert pc.closed
        assert all(t.stopped for t in provider.streams[0].tracks)
        assert sa.status == CallStatus.LEFT

        await coord_a.leave(sa)
        await coord_b.leave(sb)

    @pytest.mark.asyncio
    async def test_cleanup_of_already_deleted_records(self, store):
        coord = _coordinator(store)
        session = await coord.join(_make_meeting(), ALICE)
        await store.delete(f"calls/{SESSION}/participants/alice")
        await store.delete(f"calls/{SESSION}")
        await _settle(store, session)

        await coord.leave(session)
        assert store.paths() == []

    @pytest.mark.asyncio
    async def test_cleanup_errors_are_swallowed(self):
        class FlakyStore(InMemoryDocumentStore):
            async def delete(self, path):
                if "/connections/" in path and "Candidates" not in path:
                    raise StoreError("network down", path=path)
                await super().delete(path)

        store = FlakyStore()
        base = f"calls/{SESSION}"
        await store.set(f"{base}/connections/alice_zed", {"offer": {"type": "offer", "sdp": "x"}})
        await store.add(f"{base}/connections/alice_zed/answerCandidates", {"candidate": "z1"})

        coord = _coordinator(store)
        session = await coord.join(_make_meeting(), ALICE)
        await coord.leave(session)

        remaining = store.paths()
        assert remaining == [f"{base}/connections/alice_zed"]
        await store.close()


# ── Join guards ──────────────────────────────────────────────────────────


class TestJoinGuards:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [MeetingStatus.PENDING, MeetingStatus.RESCHEDULED])
    async def test_meeting_must_be_accepted(self, store, status):
        with pytest.raises(InvalidTransitionError):
            await _coordinator(store).join(_make_meeting(status), ALICE)
        assert store.paths() == []

    @pytest.mark.asyncio
    async def test_uninvited_parent_denied(self, store):
        parent = Actor(user_id="p1", role=Role.PARENT, email="p@x.edu")
        with pytest.raises(PermissionDeniedError):
            await _coordinator(store).join(_make_meeting(), parent)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error,cause", [
        (NotAllowedError("denied"), MediaErrorCause.PERMISSION_DENIED),
        (NotFoundError("no camera"), MediaErrorCause.NO_DEVICE),
        (RuntimeError("driver crashed"), MediaErrorCause.UNKNOWN),
    ])
    async def test_media_failure_writes_nothing(self, store, error, cause):
        coord = _coordinator(store, FakeMediaProvider(error=error))
        with pytest.raises(MediaAcquisitionError) as exc:
            await coord.join(_make_meeting(), ALICE)
        assert exc.value.cause_kind == cause
        assert store.paths() == []
        assert coord.active_sessions == []

    @pytest.mark.asyncio
    async def test_rejoin_returns_live_session(self, store):
        coord = _coordinator(store)
        first = await coord.join(_make_meeting(), ALICE)
        assert await coord.join(_make_meeting(), ALICE) is first
        await coord.leave(first)
