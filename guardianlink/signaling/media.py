"""
Peer media collaborators.

The coordinator never touches a network or a camera itself; it drives these
protocols. A production client plugs in its WebRTC stack, tests plug in fakes.
"""

from typing import Any, Callable, Optional, Protocol, Union

from guardianlink.exceptions import MediaAcquisitionError, MediaErrorCause
from guardianlink.schemas.call import IceCandidate, SessionDescription

# Connection states after which a peer is torn down locally.
TERMINAL_STATES = frozenset({"failed", "disconnected", "closed"})

_PERMISSION_ERRORS = {"NotAllowedError", "PermissionDeniedError", "SecurityError"}
_NO_DEVICE_ERRORS = {"NotFoundError", "DevicesNotFoundError", "OverconstrainedError"}


class MediaTrack(Protocol):
    kind: str  # "audio" | "video"
    enabled: bool

    def stop(self) -> None: ...


class MediaStream(Protocol):
    @property
    def tracks(self) -> list[MediaTrack]: ...


class MediaProvider(Protocol):
    async def get_user_media(self, video: bool = True, audio: bool = True) -> MediaStream: ...


CandidateCallback = Callable[[Optional[Union[IceCandidate, dict[str, Any]]]], None]


class PeerConnection(Protocol):
    """
    The subset of a WebRTC peer connection the handshake needs.

    Callbacks are plain attributes, assigned by the coordinator:
    ``on_ice_candidate(candidate | None)``, ``on_connection_state_change(state)``
    and ``on_track(stream)``.
    """

    connection_state: str
    on_ice_candidate: Optional[CandidateCallback]
    on_connection_state_change: Optional[Callable[[str], None]]
    on_track: Optional[Callable[[Any], None]]

    def add_track(self, track: MediaTrack, stream: MediaStream) -> None: ...

    async def create_offer(self) -> SessionDescription: ...

    async def create_answer(self) -> SessionDescription: ...

    async def set_local_description(self, description: SessionDescription) -> None: ...

    async def set_remote_description(self, description: SessionDescription) -> None: ...

    async def add_ice_candidate(self, candidate: IceCandidate) -> None: ...

    async def close(self) -> None: ...


PeerConnectionFactory = Callable[[list[str]], PeerConnection]


def classify_media_error(exc: BaseException) -> MediaErrorCause:
    """Map a capture failure to permission_denied | no_device | unknown."""
    if isinstance(exc, MediaAcquisitionError):
        return exc.cause_kind
    if isinstance(exc, PermissionError):
        return MediaErrorCause.PERMISSION_DENIED
    name = getattr(exc, "name", None) or type(exc).__name__
    if name in _PERMISSION_ERRORS:
        return MediaErrorCause.PERMISSION_DENIED
    if name in _NO_DEVICE_ERRORS:
        return MediaErrorCause.NO_DEVICE
    return MediaErrorCause.UNKNOWN


def stop_stream(stream: Optional[MediaStream]) -> None:
    if stream is None:
        return
    for track in stream.tracks:
        track.stop()
