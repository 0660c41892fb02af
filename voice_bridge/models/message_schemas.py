"""
Pydantic models for the Twilio Media Streams WebSocket protocol.

This module defines structured data models for the JSON event envelopes exchanged
with the telephony provider on the media-stream socket, providing type validation
and documentation for both directions.
"""

import base64
from typing import Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from voice_bridge.config.constants import OUTBOUND_TRACK


class BaseEvent(BaseModel):
    """Base model for all media-stream events."""

    event: str = Field(..., description="Event type identifier")
    sequenceNumber: Optional[str] = Field(
        None, description="Provider sequence number of the envelope"
    )


# Inbound events
class ConnectedEvent(BaseEvent):
    """Handshake acknowledgement sent once the socket is established."""

    event: Literal["connected"]
    protocol: Optional[str] = None
    version: Optional[str] = None


class StartMetadata(BaseModel):
    """Metadata describing the stream carried by the start event."""

    streamSid: Optional[str] = None
    callSid: Optional[str] = None
    tracks: Optional[list] = None
    mediaFormat: Optional[Dict[str, Union[str, int]]] = None
    customParameters: Optional[Dict[str, str]] = None


class StartEvent(BaseEvent):
    """Stream start; streamSid tags every outbound frame of the call."""

    event: Literal["start"]
    streamSid: str = Field(..., description="Stream identifier used for replies")
    start: Optional[StartMetadata] = None

    @field_validator("streamSid")
    def validate_stream_sid(cls, v):
        """Validate that the stream identifier is not empty."""
        if not v.strip():
            raise ValueError("streamSid cannot be empty")
        return v


class MediaPayload(BaseModel):
    """One inbound audio frame."""

    payload: str = Field(..., description="Base64-encoded audio data")
    track: Optional[str] = None
    chunk: Optional[str] = None
    timestamp: Optional[str] = None

    @field_validator("payload")
    def validate_payload(cls, v):
        """Validate that the payload is valid base64."""
        try:
            base64.b64decode(v, validate=True)
        except Exception:
            raise ValueError("Invalid base64 encoded audio data")
        return v


class MediaEvent(BaseEvent):
    """Inbound audio carried by the telephony provider."""

    event: Literal["media"]
    streamSid: Optional[str] = None
    media: MediaPayload


class StopEvent(BaseEvent):
    """The call leg ended on the telephony side."""

    event: Literal["stop"]
    streamSid: Optional[str] = None


# Outbound events
class OutboundMedia(BaseModel):
    """Media body of an outbound frame, with the pacing metadata the protocol requires."""

    track: Literal["outbound"] = OUTBOUND_TRACK
    chunk: str = Field(..., description="Strictly increasing chunk counter")
    timestamp: str = Field(..., description="Milliseconds since the first outbound chunk")
    payload: str = Field(..., description="Base64-encoded audio data")


class OutboundMediaMessage(BaseModel):
    """Outbound media envelope sent back on the media-stream socket."""

    event: Literal["media"] = "media"
    streamSid: str
    media: OutboundMedia


# Union type for all possible incoming events
IncomingEvent = Union[ConnectedEvent, StartEvent, MediaEvent, StopEvent]

INCOMING_EVENT_MODELS = {
    "connected": ConnectedEvent,
    "start": StartEvent,
    "media": MediaEvent,
    "stop": StopEvent,
}
