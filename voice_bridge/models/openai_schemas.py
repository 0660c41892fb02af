"""
Pydantic models for OpenAI Realtime API message structures.

This module provides type-safe models for the client events the bridge sends to
the Realtime API. Server events are consumed as plain dictionaries and
normalised by the provider link's dispatch table.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class TurnDetection(BaseModel):
    """Server-side voice activity detection settings."""

    type: Literal["server_vad"] = "server_vad"
    threshold: float = Field(0.7, ge=0.0, le=1.0)
    prefix_padding_ms: int = 200
    silence_duration_ms: int = 1200


class InputAudioTranscription(BaseModel):
    """Enables transcription of the caller's audio."""

    model: str = "whisper-1"


class RealtimeSessionConfig(BaseModel):
    """Body of the session.update configuration message."""

    modalities: List[str] = Field(default_factory=lambda: ["text", "audio"])
    instructions: str
    voice: str = "alloy"
    input_audio_format: str = "g711_ulaw"
    output_audio_format: str = "g711_ulaw"
    input_audio_transcription: InputAudioTranscription = Field(
        default_factory=InputAudioTranscription
    )
    turn_detection: TurnDetection = Field(default_factory=TurnDetection)
    temperature: Optional[float] = None
    max_response_output_tokens: Optional[int] = None


class SessionUpdateMessage(BaseModel):
    """Configuration handshake sent once on connect."""

    type: Literal["session.update"] = "session.update"
    session: RealtimeSessionConfig


class InputAudioBufferAppendMessage(BaseModel):
    """Appends base64 audio to the provider's input buffer."""

    type: Literal["input_audio_buffer.append"] = "input_audio_buffer.append"
    audio: str


class RealtimeErrorDetail(BaseModel):
    """Error body of a server error event."""

    type: Optional[str] = None
    code: Optional[str] = None
    message: Optional[str] = None
    param: Optional[str] = None


def describe_error(message: Dict[str, Any]) -> str:
    """Render a server error event as a single log-friendly string."""
    detail = RealtimeErrorDetail(**(message.get("error") or {}))
    parts = [p for p in (detail.type, detail.code, detail.message) if p]
    return ": ".join(parts) or "unknown error"
