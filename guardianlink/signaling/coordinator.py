"""
Call Signaling Coordinator — mesh video calls over the document store.

Store layout for one call session ``sid``:

    calls/{sid}                                      session doc
    calls/{sid}/participants/{userId}                one per joined user
    calls/{sid}/connections/{pairKey}                {offer, answer}
    calls/{sid}/connections/{pairKey}/offerCandidates/{auto}
    calls/{sid}/connections/{pairKey}/answerCandidates/{auto}

Joining first clears connection docs of this user left over from an earlier
visit. Handshake per participant pair:
1. Both sides see each other through the participants subscription
2. The lexicographically smaller id is the offerer; it writes the offer
3. The answerer applies the offer, writes the answer (merged)
4. Each side writes its own ICE candidates to its candidate collection and
   reads the other side's, buffering them until the remote description is in

Every listener may fire again for the same state, so applying a remote
description and adding a candidate are both guarded.
"""

import asyncio
from enum import StrEnum
from typing import Any, Awaitable, Optional, Union

import structlog

from guardianlink.auth.rbac import Actor, Capability, Role, check_capability
from guardianlink.config import settings
from guardianlink.exceptions import (
    InvalidTransitionError,
    MediaAcquisitionError,
    PermissionDeniedError,
    ValidationError,
)
from guardianlink.meetings.lifecycle import can_join_call
from guardianlink.schemas.call import ConnectionDoc, IceCandidate, ParticipantDoc
from guardianlink.schemas.meeting import Meeting
from guardianlink.signaling.media import (
    TERMINAL_STATES,
    MediaProvider,
    MediaStream,
    PeerConnection,
    PeerConnectionFactory,
    classify_media_error,
    stop_stream,
)
from guardianlink.store.base import ChangeEvent, ChangeType, DocumentStore, Subscription
from guardianlink.store.paths import join_path

logger = structlog.get_logger(__name__)


def pair_key(a: str, b: str) -> str:
    """Deterministic id of an unordered participant pair."""
    first, second = sorted((a, b))
    return f"{first}_{second}"


def is_offerer(local_id: str, remote_id: str) -> bool:
    return local_id < remote_id


class CallStatus(StrEnum):
    IDLE = "idle"
    JOINING = "joining"
    WAITING = "waiting"
    CONNECTED = "connected"
    LEFT = "left"


class CallPaths:
    """Document paths of one call session."""

    def __init__(self, session_id: str, calls_collection: Optional[str] = None):
        self.session_id = session_id
        self.root = calls_collection or settings.calls_collection

    @property
    def session(self) -> str:
        return join_path(self.root, self.session_id)

    @property
    def participants(self) -> str:
        return join_path(self.session, "participants")

    def participant(self, user_id: str) -> str:
        return join_path(self.participants, user_id)

    @property
    def connections(self) -> str:
        return join_path(self.session, "connections")

    def connection(self, pair: str) -> str:
        return join_path(self.connections, pair)

    def offer_candidates(self, pair: str) -> str:
        return join_path(self.connection(pair), "offerCandidates")

    def answer_candidates(self, pair: str) -> str:
        return join_path(self.connection(pair), "answerCandidates")


# ============================================================================
# PEER LINK
# ============================================================================


class PeerLink:
    """
    The local end of one participant pair.

    ``_remote_claimed`` is set before the first await of the apply path, so a
    repeated snapshot that arrives while the first one is still being handled
    is ignored instead of applying the description twice. ``_remote_applied``
    is set only once the description is in; remote candidates are buffered
    until then.

    Every await in the handshake may outlive ``close()``; nothing is written
    or subscribed after the link is closed.
    """

    def __init__(
        self,
        session: "CallSession",
        remote_id: str,
        remote_name: str,
        pc: PeerConnection,
    ):
        self.session = session
        self.remote_id = remote_id
        self.remote_name = remote_name
        self.pc = pc
        self.pair = pair_key(session.user_id, remote_id)
        self.offerer = is_offerer(session.user_id, remote_id)
        self.closed = False

        self._remote_claimed = False
        self._remote_applied = False
        self._pending_candidates: list[IceCandidate] = []
        self._seen_candidates: set[str] = set()
        self._subscriptions: list[Subscription] = []

    @property
    def remote_description_applied(self) -> bool:
        return self._remote_applied

    @property
    def buffered_candidates(self) -> int:
        return len(self._pending_candidates)

    async def start(self, local_stream: MediaStream) -> None:
        paths = self.session.paths
        store = self.session.store

        for track in local_stream.tracks:
            self.pc.add_track(track, local_stream)
        self.pc.on_ice_candidate = self._on_local_candidate
        self.pc.on_connection_state_change = self._on_state_change
        self.pc.on_track = self._on_track

        connection_path = paths.connection(self.pair)
        if self.offerer:
            offer = await self.pc.create_offer()
            if self.closed:
                return
            await self.pc.set_local_description(offer)
            if self.closed:
                return
            await store.set(connection_path, {"offer": offer.model_dump()})
            if self.closed:
                await self.session._quietly(store.delete(connection_path), "discard_offer")
                return
            self._listen(connection_path, self._on_connection_doc)
            self._listen(paths.answer_candidates(self.pair), self._on_remote_candidate)
        else:
            self._listen(connection_path, self._on_connection_doc)
            self._listen(paths.offer_candidates(self.pair), self._on_remote_candidate)

        logger.info(
            "peer_link_started",
            session_id=paths.session_id,
            pair=self.pair,
            role="offerer" if self.offerer else "answerer",
        )

    def _listen(self, path: str, handler) -> None:
        if self.closed:
            return
        self._subscriptions.append(self.session.store.subscribe(path, handler))

    # ── Remote side ───────────────────────────────────────────────────

    async def _on_connection_doc(self, event: ChangeEvent) -> None:
        if self.closed or event.type == ChangeType.REMOVED or not event.data:
            return
        doc = ConnectionDoc.model_validate(event.data)
        remote = doc.answer if self.offerer else doc.offer
        if remote is None or self._remote_claimed:
            return

        self._remote_claimed = True
        await self.pc.set_remote_description(remote)
        if self.closed:
            return
        self._remote_applied = True
        await self._flush_candidates()

        if not self.offerer:
            answer = await self.pc.create_answer()
            await self.pc.set_local_description(answer)
            if self.closed:
                return
            await self.session.store.set(
                self.session.paths.connection(self.pair),
                {"answer": answer.model_dump()},
                merge=True,
            )
        logger.debug(
            "remote_description_applied",
            pair=self.pair,
            sdp_type=remote.type,
        )

    async def _on_remote_candidate(self, event: ChangeEvent) -> None:
        if self.closed or event.type != ChangeType.ADDED or not event.data:
            return
        if event.doc_id in self._seen_candidates:
            return
        self._seen_candidates.add(event.doc_id)
        candidate = IceCandidate.model_validate(event.data)
        if not self._remote_applied:
            self._pending_candidates.append(candidate)
            return
        await self.pc.add_ice_candidate(candidate)

    async def _flush_candidates(self) -> None:
        while self._pending_candidates and not self.closed:
            await self.pc.add_ice_candidate(self._pending_candidates.pop(0))

    # ── Local side ────────────────────────────────────────────────────

    def _on_local_candidate(
        self, candidate: Optional[Union[IceCandidate, dict[str, Any]]]
    ) -> None:
        # None marks the end of gathering.
        if candidate is None or self.closed:
            return
        if not isinstance(candidate, IceCandidate):
            candidate = IceCandidate.model_validate(candidate)
        paths = self.session.paths
        target = (
            paths.offer_candidates(self.pair)
            if self.offerer
            else paths.answer_candidates(self.pair)
        )
        self.session.spawn(
            self.session.store.add(target, candidate.model_dump(by_alias=True, exclude_none=True)),
            "candidate_write",
        )

    def _on_state_change(self, state: str) -> None:
        if state in TERMINAL_STATES and not self.closed:
            logger.warning(
                "peer_connection_failed",
                session_id=self.session.paths.session_id,
                remote_id=self.remote_id,
                state=state,
            )
            self.session.spawn(self.session.drop_peer(self.remote_id, state), "peer_teardown")

    def _on_track(self, stream: Any) -> None:
        self.session.remote_streams[self.remote_id] = stream
        if self.session.status == CallStatus.WAITING:
            self.session.status = CallStatus.CONNECTED

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()
        self._pending_candidates.clear()
        await self.pc.close()


# ============================================================================
# CALL SESSION
# ============================================================================


class CallSession:
    """One user's presence in one call: local media, peers and listeners."""

    def __init__(
        self,
        store: DocumentStore,
        session_id: str,
        user_id: str,
        user_name: str,
        media_provider: MediaProvider,
        peer_factory: PeerConnectionFactory,
        ice_servers: Optional[list[str]] = None,
        calls_collection: Optional[str] = None,
    ):
        if not session_id or not user_id:
            raise ValidationError("Call session and user id are required", field="user_id")
        self.store = store
        self.user_id = user_id
        self.user_name = user_name
        self.paths = CallPaths(session_id, calls_collection)
        self.ice_servers = list(ice_servers if ice_servers is not None else settings.ice_servers)
        self.status = CallStatus.IDLE

        self.local_stream: Optional[MediaStream] = None
        self.peers: dict[str, PeerLink] = {}
        self.participants: dict[str, ParticipantDoc] = {}
        self.remote_streams: dict[str, Any] = {}
        self.is_muted = False
        self.is_camera_off = False

        self._media = media_provider
        self._peer_factory = peer_factory
        self._subscriptions: list[Subscription] = []
        self._tasks: set[asyncio.Task] = set()

    @property
    def session_id(self) -> str:
        return self.paths.session_id

    # ── Join ──────────────────────────────────────────────────────────

    async def join(self) -> None:
        """
        Acquire media, register as a participant and start listening.

        Raises:
            MediaAcquisitionError: camera/microphone unavailable; nothing is
                written to the store
        """
        if self.status != CallStatus.IDLE:
            raise InvalidTransitionError(
                "Call session already used",
                from_state=self.status.value,
                action="join",
            )
        self.status = CallStatus.JOINING
        try:
            self.local_stream = await self._media.get_user_media(video=True, audio=True)
        except Exception as e:
            cause = classify_media_error(e)
            self.status = CallStatus.IDLE
            logger.warning(
                "media_acquisition_failed",
                session_id=self.session_id,
                user_id=self.user_id,
                cause=cause.value,
            )
            raise MediaAcquisitionError(cause, cause=e) from e

        try:
            await self.store.set(self.paths.session, {"sessionId": self.session_id}, merge=True)
            await self._clear_stale_pairs()
            participant = ParticipantDoc(user_id=self.user_id, user_name=self.user_name)
            await self.store.set(
                self.paths.participant(self.user_id),
                participant.model_dump(mode="json", by_alias=True),
            )
        except Exception:
            stop_stream(self.local_stream)
            self.local_stream = None
            self.status = CallStatus.IDLE
            raise

        self.status = CallStatus.WAITING
        self._subscriptions.append(
            self.store.subscribe(self.paths.participants, self._on_participant_change)
        )
        logger.info("call_joined", session_id=self.session_id, user_id=self.user_id)

    async def _clear_stale_pairs(self) -> None:
        """
        Drop connection docs left over from an earlier visit of this user.

        Runs before the participant doc is written, so no peer has started a
        fresh handshake with this user yet.
        """
        for pair, _ in await self.store.list(self.paths.connections):
            if not (pair.startswith(f"{self.user_id}_") or pair.endswith(f"_{self.user_id}")):
                continue
            await self._delete_pair(pair)
            logger.info("stale_connection_cleared", session_id=self.session_id, pair=pair)

    async def _on_participant_change(self, event: ChangeEvent) -> None:
        remote_id = event.doc_id
        if event.type == ChangeType.REMOVED:
            self.participants.pop(remote_id, None)
            if remote_id != self.user_id:
                await self.drop_peer(remote_id, "participant_left")
            return

        participant = ParticipantDoc.model_validate(event.data or {"userId": remote_id})
        self.participants[remote_id] = participant
        if (
            event.type == ChangeType.ADDED
            and remote_id != self.user_id
            and self.status in (CallStatus.WAITING, CallStatus.CONNECTED)
        ):
            await self._connect(remote_id, participant.user_name)

    async def _connect(self, remote_id: str, remote_name: str) -> None:
        if remote_id in self.peers or self.status == CallStatus.LEFT:
            return
        link = PeerLink(self, remote_id, remote_name, self._peer_factory(self.ice_servers))
        self.peers[remote_id] = link
        try:
            await link.start(self.local_stream)
        except Exception:
            logger.exception(
                "peer_setup_failed",
                session_id=self.session_id,
                remote_id=remote_id,
            )
            await self.drop_peer(remote_id, "setup_failed")

    async def drop_peer(self, remote_id: str, reason: str) -> None:
        """Close and forget one peer. Unknown peers are ignored."""
        link = self.peers.pop(remote_id, None)
        self.remote_streams.pop(remote_id, None)
        if link is None:
            return
        await link.close()
        if not self.remote_streams and self.status == CallStatus.CONNECTED:
            self.status = CallStatus.WAITING
        logger.info(
            "peer_removed",
            session_id=self.session_id,
            remote_id=remote_id,
            reason=reason,
        )

    # ── Local controls ────────────────────────────────────────────────

    def toggle_mute(self) -> bool:
        """Flip the audio tracks; returns the new muted state."""
        if self.local_stream is None:
            return self.is_muted
        for track in self.local_stream.tracks:
            if track.kind == "audio":
                track.enabled = not track.enabled
        self.is_muted = not self.is_muted
        return self.is_muted

    def toggle_camera(self) -> bool:
        """Flip the video tracks; returns the new camera-off state."""
        if self.local_stream is None:
            return self.is_camera_off
        for track in self.local_stream.tracks:
            if track.kind == "video":
                track.enabled = not track.enabled
        self.is_camera_off = not self.is_camera_off
        return self.is_camera_off

    # ── Background work ───────────────────────────────────────────────

    def spawn(self, coro: Awaitable[Any], what: str) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._task_done(t, what))

    def _task_done(self, task: asyncio.Task, what: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "call_background_task_failed",
                session_id=self.session_id,
                task=what,
                error=str(exc),
            )

    async def drain(self) -> None:
        """Wait for in-flight background writes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Leave ─────────────────────────────────────────────────────────

    async def leave(self) -> None:
        """
        Tear down local state, deregister, and garbage-collect the session
        when this was the last participant.

        Cleanup failures are logged and never raised; leaving twice is a no-op.
        """
        if self.status in (CallStatus.LEFT, CallStatus.IDLE):
            self.status = CallStatus.LEFT
            return
        self.status = CallStatus.LEFT

        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

        for remote_id, link in list(self.peers.items()):
            await self._quietly(link.close(), "close_peer", remote_id=remote_id)
        self.peers.clear()
        self.remote_streams.clear()
        self.participants.clear()

        stop_stream(self.local_stream)
        self.local_stream = None

        await self._quietly(
            self.store.delete(self.paths.participant(self.user_id)), "remove_participant"
        )
        logger.info("call_left", session_id=self.session_id, user_id=self.user_id)

        try:
            remaining = await self.store.list(self.paths.participants)
        except Exception as e:
            logger.warning(
                "call_cleanup_failed",
                session_id=self.session_id,
                step="list_participants",
                error=str(e),
            )
            return
        if not remaining:
            await self._garbage_collect()

    async def _garbage_collect(self) -> None:
        """Delete connections, both candidate collections and the session doc."""
        try:
            connections = await self.store.list(self.paths.connections)
        except Exception as e:
            logger.warning(
                "call_cleanup_failed",
                session_id=self.session_id,
                step="list_connections",
                error=str(e),
            )
            connections = []

        for pair, _ in connections:
            await self._delete_pair(pair)

        await self._quietly(self.store.delete(self.paths.session), "delete_session")
        logger.info("call_session_removed", session_id=self.session_id)

    async def _delete_pair(self, pair: str) -> None:
        for collection in (
            self.paths.offer_candidates(pair),
            self.paths.answer_candidates(pair),
        ):
            await self._delete_collection(collection)
        await self._quietly(
            self.store.delete(self.paths.connection(pair)), "delete_connection", pair=pair
        )

    async def _delete_collection(self, collection: str) -> None:
        try:
            docs = await self.store.list(collection)
        except Exception as e:
            logger.warning(
                "call_cleanup_failed",
                session_id=self.session_id,
                step="list_candidates",
                error=str(e),
            )
            return
        for doc_id, _ in docs:
            await self._quietly(
                self.store.delete(join_path(collection, doc_id)), "delete_candidate"
            )

    async def _quietly(self, coro: Awaitable[Any], step: str, **context: Any) -> None:
        try:
            await coro
        except Exception as e:
            logger.warning(
                "call_cleanup_failed",
                session_id=self.session_id,
                step=step,
                error=str(e),
                **context,
            )


# ============================================================================
# COORDINATOR
# ============================================================================


class CallSignalingCoordinator:
    """
    Entry point for meeting calls.

    Owns the registry of live CallSession objects, keyed by
    (call session id, user id), so one user holds at most one presence per
    call.
    """

    def __init__(
        self,
        store: DocumentStore,
        media_provider: MediaProvider,
        peer_factory: PeerConnectionFactory,
        ice_servers: Optional[list[str]] = None,
        calls_collection: Optional[str] = None,
    ):
        self._store = store
        self._media = media_provider
        self._peer_factory = peer_factory
        self._ice_servers = ice_servers
        self._calls_collection = calls_collection
        self._sessions: dict[tuple[str, str], CallSession] = {}

    @property
    def active_sessions(self) -> list[CallSession]:
        return list(self._sessions.values())

    def get_session(self, session_id: str, user_id: str) -> Optional[CallSession]:
        return self._sessions.get((session_id, user_id))

    async def join(self, meeting: Meeting, actor: Actor) -> CallSession:
        """
        Join the call of an accepted meeting.

        Raises:
            InvalidTransitionError: meeting not accepted
            PermissionDeniedError: actor's role is not invited
            MediaAcquisitionError: no camera/microphone
        """
        check_capability(actor, Capability.CALLS_JOIN)
        if actor.role != Role.MENTOR and actor.role not in meeting.invitees:
            raise PermissionDeniedError(
                "Not invited to this meeting",
                role=actor.role.value,
                capability=Capability.CALLS_JOIN.value,
            )
        if not can_join_call(meeting):
            raise InvalidTransitionError(
                "The call opens once the meeting is accepted",
                from_state=meeting.status.value,
                action="join_call",
            )

        key = (meeting.call_session_id, actor.user_id)
        existing = self._sessions.get(key)
        if existing is not None and existing.status != CallStatus.LEFT:
            return existing

        session = CallSession(
            store=self._store,
            session_id=meeting.call_session_id,
            user_id=actor.user_id,
            user_name=actor.name,
            media_provider=self._media,
            peer_factory=self._peer_factory,
            ice_servers=self._ice_servers,
            calls_collection=self._calls_collection,
        )
        await session.join()
        self._sessions[key] = session
        return session

    async def leave(self, session: CallSession) -> None:
        self._sessions.pop((session.session_id, session.user_id), None)
        await session.leave()

    async def leave_all(self) -> None:
        for session in list(self._sessions.values()):
            await self.leave(session)
