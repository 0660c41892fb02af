"""
Session data model for one bridged phone call.

A Session is created by the SessionStore and mutated only by the
SessionController that owns it. The status and outcome models are the
read-only views handed to monitoring code and the persistence collaborator.
"""

import uuid
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, List, Optional

from pydantic import BaseModel, Field


class SessionState(str, Enum):
    CREATED = "created"
    AWAITING_TELEPHONY_LINK = "awaiting_telephony_link"
    AWAITING_AI_HANDSHAKE = "awaiting_ai_handshake"
    ACTIVE = "active"
    ENDING = "ending"
    ENDED = "ended"


TERMINATING_STATES = (SessionState.ENDING, SessionState.ENDED)


class Speaker(str, Enum):
    AGENT = "agent"
    SUBJECT = "subject"


class FrameDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class ConversationTurn(BaseModel):
    """One attributable utterance."""

    speaker: Speaker
    text: str
    timestamp: datetime


class AudioFrame(BaseModel):
    """A fixed-size slice of encoded audio."""

    sequence: int
    direction: FrameDirection
    payload: bytes


class CallOutcomeStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    EVICTED = "evicted"


class SuccessRating(str, Enum):
    SUCCESSFUL = "successful"
    PARTIALLY_SUCCESSFUL = "partially_successful"
    UNSUCCESSFUL = "unsuccessful"


class CallOutcome(BaseModel):
    """Final record handed to the persistence collaborator."""

    session_id: str
    subject_id: str
    subject_name: str
    transcript: str
    duration_seconds: int
    status: CallOutcomeStatus
    reason: str
    conversation_log: List[ConversationTurn] = Field(default_factory=list)
    started_at: datetime
    ended_at: datetime
    success_rating: SuccessRating
    quality_score: int = Field(ge=1, le=10)
    information_gathered: bool


class SessionStatus(BaseModel):
    """Status view used by monitoring and dashboard code."""

    sessionId: str
    subjectId: str
    active: bool
    durationSeconds: int
    transcriptLength: int
    state: SessionState


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id() -> str:
    return f"rt_{uuid.uuid4().hex}"


class Session:
    """
    One active or recently-ended call bridge.

    Attributes:
        id: Opaque unique identifier, generated at creation
        subject_id: The person being called; at most one live session per subject
        call_ref: External call-record identifier, opaque to the bridge
        state: Lifecycle state, see SessionState
        telephony_link / ai_link: Live link handles, absent until attached
        pending_audio_frames: Inbound frames buffered until the AI handshake completes
        conversation_log: Ordered conversation turns
    """

    def __init__(
        self,
        subject_id: str,
        call_ref: str,
        custom_instructions: Optional[str] = None,
        subject_name: Optional[str] = None,
        created_at: Optional[datetime] = None,
        session_id: Optional[str] = None,
    ):
        self.id = session_id or new_session_id()
        self.subject_id = subject_id
        self.call_ref = call_ref
        self.custom_instructions = custom_instructions
        self.subject_name = subject_name or subject_id
        self.state = SessionState.CREATED
        self.telephony_link: Optional[Any] = None
        self.ai_link: Optional[Any] = None
        self.stream_sid: Optional[str] = None
        self.pending_audio_frames: Deque[AudioFrame] = deque()
        self.conversation_log: List[ConversationTurn] = []
        self.created_at = created_at or utcnow()
        self.ended_at: Optional[datetime] = None

    @property
    def is_terminating(self) -> bool:
        return self.state in TERMINATING_STATES

    def duration_seconds(self, now: Optional[datetime] = None) -> int:
        end = self.ended_at or now or utcnow()
        return max(0, int((end - self.created_at).total_seconds()))

    def status(self, now: Optional[datetime] = None) -> SessionStatus:
        return SessionStatus(
            sessionId=self.id,
            subjectId=self.subject_id,
            active=not self.is_terminating,
            durationSeconds=self.duration_seconds(now),
            transcriptLength=len(self.conversation_log),
            state=self.state,
        )

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, subject_id={self.subject_id!r}, state={self.state.value})"
