"""
Environment-driven settings for the voice session bridge.

All tunables live on one pydantic model so that a BridgeService can be built
from the process environment in production and from explicit values in tests.
"""

import os
from pathlib import Path
from typing import Literal, Optional

import dotenv
from pydantic import BaseModel, Field, field_validator

from voice_bridge.config.constants import (
    DEFAULT_FRAME_BYTES,
    DEFAULT_FRAME_DURATION_MS,
    DEFAULT_REALTIME_MODEL,
    DEFAULT_REALTIME_URL,
    DEFAULT_TRANSCRIPTION_MODEL,
    DEFAULT_VOICE,
)

AudioFormat = Literal["g711_ulaw", "pcm16"]


def load_env_file(path: Path = Path(".") / ".env") -> None:
    """Load environment variables from a .env file if it exists."""
    if path.exists():
        dotenv.load_dotenv(path)


class BridgeSettings(BaseModel):
    """Settings for the bridge, its provider links and its resource limits."""

    openai_api_key: Optional[str] = None
    realtime_model: str = DEFAULT_REALTIME_MODEL
    realtime_url: str = DEFAULT_REALTIME_URL
    voice: str = DEFAULT_VOICE

    telephony_audio_format: AudioFormat = "g711_ulaw"
    provider_audio_format: AudioFormat = "g711_ulaw"

    vad_threshold: float = Field(0.7, ge=0.0, le=1.0)
    vad_prefix_padding_ms: int = Field(200, ge=0)
    vad_silence_duration_ms: int = Field(1200, ge=0)
    transcription_model: str = DEFAULT_TRANSCRIPTION_MODEL
    temperature: float = 0.8
    max_response_output_tokens: int = 150

    outbound_frame_bytes: int = Field(DEFAULT_FRAME_BYTES, gt=0)
    frame_duration_ms: int = Field(DEFAULT_FRAME_DURATION_MS, gt=0)
    transcript_coalesce_seconds: float = Field(3.0, ge=0.0)

    connect_timeout_seconds: float = Field(30.0, gt=0)
    handshake_timeout_seconds: float = Field(10.0, gt=0)
    link_close_timeout_seconds: float = Field(2.0, gt=0)
    link_send_timeout_seconds: float = Field(5.0, gt=0)
    telephony_connect_timeout_seconds: float = Field(60.0, gt=0)
    max_session_lifetime_seconds: float = Field(3600.0, gt=0)
    persistence_timeout_seconds: float = Field(30.0, gt=0)
    max_active_sessions: int = Field(50, gt=0)
    max_pending_frames: int = Field(1500, gt=0)

    public_base_url: str = "http://localhost:8000"
    transcript_dir: str = "conversation_logs"

    @field_validator("public_base_url")
    def strip_trailing_slash(cls, v):
        """Normalise the base URL so paths can be appended safely."""
        return v.rstrip("/")

    @classmethod
    def from_env(cls) -> "BridgeSettings":
        """
        Build settings from environment variables.

        Unset variables keep their defaults; a .env file in the working
        directory is loaded first when present.
        """
        load_env_file()
        env_map = {
            "openai_api_key": "OPENAI_API_KEY",
            "realtime_model": "OPENAI_REALTIME_MODEL",
            "realtime_url": "OPENAI_REALTIME_URL",
            "voice": "REALTIME_VOICE",
            "telephony_audio_format": "TELEPHONY_AUDIO_FORMAT",
            "provider_audio_format": "PROVIDER_AUDIO_FORMAT",
            "vad_threshold": "VAD_THRESHOLD",
            "vad_prefix_padding_ms": "VAD_PREFIX_PADDING_MS",
            "vad_silence_duration_ms": "VAD_SILENCE_DURATION_MS",
            "transcription_model": "TRANSCRIPTION_MODEL",
            "temperature": "REALTIME_TEMPERATURE",
            "max_response_output_tokens": "MAX_RESPONSE_OUTPUT_TOKENS",
            "outbound_frame_bytes": "OUTBOUND_FRAME_BYTES",
            "frame_duration_ms": "FRAME_DURATION_MS",
            "transcript_coalesce_seconds": "TRANSCRIPT_COALESCE_SECONDS",
            "connect_timeout_seconds": "CONNECT_TIMEOUT_SECONDS",
            "handshake_timeout_seconds": "HANDSHAKE_TIMEOUT_SECONDS",
            "link_close_timeout_seconds": "LINK_CLOSE_TIMEOUT_SECONDS",
            "link_send_timeout_seconds": "LINK_SEND_TIMEOUT_SECONDS",
            "telephony_connect_timeout_seconds": "TELEPHONY_CONNECT_TIMEOUT_SECONDS",
            "max_session_lifetime_seconds": "MAX_SESSION_LIFETIME_SECONDS",
            "persistence_timeout_seconds": "PERSISTENCE_TIMEOUT_SECONDS",
            "max_active_sessions": "MAX_ACTIVE_SESSIONS",
            "max_pending_frames": "MAX_PENDING_FRAMES",
            "public_base_url": "PUBLIC_BASE_URL",
            "transcript_dir": "TRANSCRIPT_DIR",
        }
        values = {
            field: os.environ[var] for field, var in env_map.items() if os.getenv(var)
        }
        return cls(**values)

    def stream_url(self, session_id: str) -> str:
        """Return the media-stream WebSocket URL the telephony provider should dial."""
        base = self.public_base_url
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}/media-stream/{session_id}"
