"""
Call Signaling Documents.

Wire shapes exchanged through the document store. Keys are camelCase so the
documents are readable by any other client of the same store.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from guardianlink.schemas.common import utcnow


class ParticipantDoc(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    user_name: str = Field(default="", alias="userName")
    joined_at: datetime = Field(default_factory=utcnow, alias="joinedAt")


class SessionDescription(BaseModel):
    type: Literal["offer", "answer"]
    sdp: str


class ConnectionDoc(BaseModel):
    offer: Optional[SessionDescription] = None
    answer: Optional[SessionDescription] = None


class IceCandidate(BaseModel):
    """Raw ICE candidate fields; unknown fields pass through untouched."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    candidate: str
    sdp_mid: Optional[str] = Field(default=None, alias="sdpMid")
    sdp_m_line_index: Optional[int] = Field(default=None, alias="sdpMLineIndex")
    username_fragment: Optional[str] = Field(default=None, alias="usernameFragment")
