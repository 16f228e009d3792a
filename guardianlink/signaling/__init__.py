"""
Call signaling for meeting video calls.

Components:
- media: peer connection / media collaborator protocols
- coordinator: pair keys, PeerLink, CallSession, CallSignalingCoordinator
"""

from guardianlink.signaling.coordinator import (
    CallSession,
    CallSignalingCoordinator,
    CallStatus,
    PeerLink,
    is_offerer,
    pair_key,
)

__all__ = [
    "CallSession",
    "CallSignalingCoordinator",
    "CallStatus",
    "PeerLink",
    "is_offerer",
    "pair_key",
]
