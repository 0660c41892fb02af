"""
Constants and configuration values used throughout the application.

This module defines constants that are used across different parts of the application,
providing a centralized location for protocol names and defaults so that every
module speaks the same vocabulary.
"""

# Logger name used throughout the application
LOGGER_NAME = "voice_bridge"

# Default OpenAI model and endpoint for the Realtime API
DEFAULT_REALTIME_MODEL = "gpt-4o-realtime-preview-2024-12-17"
DEFAULT_REALTIME_URL = "wss://api.openai.com/v1/realtime"
DEFAULT_VOICE = "alloy"
DEFAULT_TRANSCRIPTION_MODEL = "whisper-1"

# Audio format constants (Realtime API naming)
AUDIO_FORMAT_G711_ULAW = "g711_ulaw"
AUDIO_FORMAT_PCM16 = "pcm16"
SUPPORTED_AUDIO_FORMATS = [AUDIO_FORMAT_G711_ULAW, AUDIO_FORMAT_PCM16]

# Sample rates
TELEPHONY_SAMPLE_RATE = 8000
PCM16_SAMPLE_RATE = 24000

# 20ms of 8kHz μ-law is 160 bytes
DEFAULT_FRAME_BYTES = 160
DEFAULT_FRAME_DURATION_MS = 20

# Telephony media stream events
TELEPHONY_EVENT_CONNECTED = "connected"
TELEPHONY_EVENT_START = "start"
TELEPHONY_EVENT_MEDIA = "media"
TELEPHONY_EVENT_STOP = "stop"
OUTBOUND_TRACK = "outbound"

# Realtime API server events
MESSAGE_TYPE_SESSION_CREATED = "session.created"
MESSAGE_TYPE_SESSION_UPDATED = "session.updated"
MESSAGE_TYPE_AUDIO_DELTA = "response.audio.delta"
MESSAGE_TYPE_AUDIO_DONE = "response.audio.done"
MESSAGE_TYPE_AUDIO_TRANSCRIPT_DELTA = "response.audio_transcript.delta"
MESSAGE_TYPE_TEXT_DELTA = "response.text.delta"
MESSAGE_TYPE_RESPONSE_DONE = "response.done"
MESSAGE_TYPE_INPUT_TRANSCRIPTION_COMPLETED = (
    "conversation.item.input_audio_transcription.completed"
)
MESSAGE_TYPE_ERROR = "error"

# WebSocket close codes
CLOSE_CODE_NORMAL = 1000
CLOSE_CODE_POLICY_VIOLATION = 1008

# Custom instructions shorter than this fall back to the default prompt
MIN_CUSTOM_INSTRUCTIONS_LENGTH = 10

DEFAULT_INSTRUCTIONS_TEMPLATE = (
    "You are a nurse assistant calling on behalf of the cardiology office. "
    "You are following up with {subject_name} using their most recent notes and clinical data.\n\n"
    "Your role is to:\n"
    "1. Check in empathetically based on context (recent hospitalization, abnormal labs, "
    "medication changes)\n"
    "2. Ask relevant follow-up questions or guide the patient based on results\n"
    "3. Escalate or flag concerning responses that may require provider attention\n"
    "4. Keep tone professional, kind, and clear, like a nurse calling a long-time patient"
)
