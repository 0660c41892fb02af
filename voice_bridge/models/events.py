"""
Normalised events emitted by the two links of a session.

Each link translates its wire protocol into one of these tagged variants so the
SessionController can dispatch every event through a single table.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class TelephonyEventKind(str, Enum):
    CONNECTED = "connected"
    START = "start"
    MEDIA = "media"
    STOP = "stop"
    CLOSED = "closed"
    ERROR = "error"


class AIEventKind(str, Enum):
    READY = "ready"
    TEXT_DELTA = "text_delta"
    AUDIO_DELTA = "audio_delta"
    AUDIO_DONE = "audio_done"
    TURN_DONE = "turn_done"
    SUBJECT_TRANSCRIPT = "subject_transcript"
    ERROR = "error"
    CLOSED = "closed"


class TelephonyEvent(BaseModel):
    """An event received on the telephony media-stream socket."""

    kind: TelephonyEventKind
    stream_sid: Optional[str] = None
    call_sid: Optional[str] = None
    payload: Optional[bytes] = None
    sequence: Optional[int] = None
    detail: Optional[str] = None
    code: Optional[int] = None
    fatal: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.kind in (TelephonyEventKind.STOP, TelephonyEventKind.CLOSED) or (
            self.kind is TelephonyEventKind.ERROR and self.fatal
        )


class AIEvent(BaseModel):
    """An event received from the speech-AI provider."""

    kind: AIEventKind
    text: Optional[str] = None
    audio: Optional[bytes] = None
    detail: Optional[str] = None
    code: Optional[int] = None
    fatal: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.kind is AIEventKind.CLOSED or (
            self.kind is AIEventKind.ERROR and self.fatal
        )
