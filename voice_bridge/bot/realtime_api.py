import asyncio
import base64
import json
import logging
import time
import traceback
from typing import Any, Callable, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from voice_bridge.config.constants import (
    CLOSE_CODE_NORMAL,
    DEFAULT_INSTRUCTIONS_TEMPLATE,
    LOGGER_NAME,
    MESSAGE_TYPE_AUDIO_DELTA,
    MESSAGE_TYPE_AUDIO_DONE,
    MESSAGE_TYPE_AUDIO_TRANSCRIPT_DELTA,
    MESSAGE_TYPE_ERROR,
    MESSAGE_TYPE_INPUT_TRANSCRIPTION_COMPLETED,
    MESSAGE_TYPE_RESPONSE_DONE,
    MESSAGE_TYPE_SESSION_CREATED,
    MESSAGE_TYPE_SESSION_UPDATED,
    MESSAGE_TYPE_TEXT_DELTA,
    MIN_CUSTOM_INSTRUCTIONS_LENGTH,
)
from voice_bridge.config.settings import BridgeSettings
from voice_bridge.errors import LinkHandshakeFailed
from voice_bridge.models.events import AIEvent, AIEventKind
from voice_bridge.models.openai_schemas import (
    InputAudioBufferAppendMessage,
    InputAudioTranscription,
    RealtimeSessionConfig,
    SessionUpdateMessage,
    TurnDetection,
    describe_error,
)
from voice_bridge.models.session import Session

logger = logging.getLogger(LOGGER_NAME)

CLOSE_CODE_ABNORMAL = 1006

# WebSocket configuration for low latency
WS_MAX_SIZE = 16 * 1024 * 1024  # 16MB - large enough for audio chunks
WS_MAX_QUEUE = 32  # Small queue to prevent buffering
WS_PING_INTERVAL = 5  # 5 seconds between pings


def build_instructions(session: Session) -> str:
    """Use the caller-supplied instructions, or the default prompt for the subject."""
    custom = (session.custom_instructions or "").strip()
    if len(custom) >= MIN_CUSTOM_INSTRUCTIONS_LENGTH:
        return custom
    return DEFAULT_INSTRUCTIONS_TEMPLATE.format(subject_name=session.subject_name)


def build_session_config(session: Session, settings: BridgeSettings) -> RealtimeSessionConfig:
    return RealtimeSessionConfig(
        modalities=["text", "audio"],
        instructions=build_instructions(session),
        voice=settings.voice,
        input_audio_format=settings.provider_audio_format,
        output_audio_format=settings.provider_audio_format,
        input_audio_transcription=InputAudioTranscription(model=settings.transcription_model),
        turn_detection=TurnDetection(
            threshold=settings.vad_threshold,
            prefix_padding_ms=settings.vad_prefix_padding_ms,
            silence_duration_ms=settings.vad_silence_duration_ms,
        ),
        temperature=settings.temperature,
        max_response_output_tokens=settings.max_response_output_tokens,
    )


def _close_code(error: ConnectionClosed) -> int:
    received = getattr(error, "rcvd", None)
    return received.code if received is not None else CLOSE_CODE_ABNORMAL


class RealtimeProviderLink:
    """
    Link to the OpenAI Realtime API for a single session.

    Sends the session.update configuration on connect and waits for the
    provider's acknowledgement, forwards caller audio with
    input_audio_buffer.append, and normalises server events into AIEvents.
    Only one socket is ever opened per link: a connect while one is pending or
    open is a no-op.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        session_config: RealtimeSessionConfig,
        url: str = "wss://api.openai.com/v1/realtime",
        connect_timeout: float = 30.0,
        handshake_timeout: float = 10.0,
        send_timeout: float = 5.0,
        close_timeout: float = 2.0,
    ):
        self.api_key = api_key
        self.model = model
        self.url = url
        self.session_config = session_config
        self.connect_timeout = connect_timeout
        self.handshake_timeout = handshake_timeout
        self.send_timeout = send_timeout
        self.close_timeout = close_timeout
        self.ws = None
        self._connecting = False
        self._connection_active = False
        self._is_closing = False
        self._last_activity = 0.0

        self._handlers: Dict[str, Callable[[Dict[str, Any]], Optional[AIEvent]]] = {
            MESSAGE_TYPE_AUDIO_DELTA: self._on_audio_delta,
            MESSAGE_TYPE_AUDIO_TRANSCRIPT_DELTA: self._on_text_delta,
            MESSAGE_TYPE_TEXT_DELTA: self._on_text_delta,
            MESSAGE_TYPE_AUDIO_DONE: lambda m: AIEvent(kind=AIEventKind.AUDIO_DONE),
            MESSAGE_TYPE_RESPONSE_DONE: lambda m: AIEvent(kind=AIEventKind.TURN_DONE),
            MESSAGE_TYPE_INPUT_TRANSCRIPTION_COMPLETED: self._on_input_transcription,
            MESSAGE_TYPE_ERROR: self._on_error,
        }
        logger.info(f"RealtimeProviderLink initialized with model: {model}")

    @property
    def is_open(self) -> bool:
        return self._connection_active

    async def connect(self) -> bool:
        """
        Open the socket and complete the configuration handshake.

        Returns:
            bool: True once the provider has acknowledged the configuration,
            False if a connection was already pending or open

        Raises:
            LinkHandshakeFailed: The socket could not be opened, or the
            provider rejected or never acknowledged the configuration
        """
        if self._is_closing:
            raise LinkHandshakeFailed("Cannot connect - link is closing")
        if self._connecting or self._connection_active:
            logger.info("Realtime connection already pending or open - ignoring connect")
            return False

        self._connecting = True
        url = f"{self.url}?model={self.model}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "OpenAI-Beta": "realtime=v1",
        }
        try:
            logger.info(f"Connecting to OpenAI Realtime API with model: {self.model}")
            connection_start = time.time()
            self.ws = await asyncio.wait_for(
                websockets.connect(
                    url,
                    max_size=WS_MAX_SIZE,
                    max_queue=WS_MAX_QUEUE,
                    ping_interval=WS_PING_INTERVAL,
                    ping_timeout=10,
                    compression=None,  # Disable compression for lower latency
                    additional_headers=headers,
                ),
                timeout=self.connect_timeout,
            )
            logger.debug(f"WebSocket connection established in {time.time() - connection_start:.2f} seconds")
        except asyncio.TimeoutError:
            self._connecting = False
            raise LinkHandshakeFailed(
                f"Timeout while connecting to OpenAI Realtime API (after {self.connect_timeout}s)"
            )
        except Exception as e:
            self._connecting = False
            logger.debug(f"Connection error details: {traceback.format_exc()}")
            raise LinkHandshakeFailed(f"Failed to connect to OpenAI Realtime API: {e}") from e

        try:
            await self._handshake()
        except LinkHandshakeFailed:
            await self._drop_socket()
            raise
        finally:
            self._connecting = False

        self._connection_active = True
        self._last_activity = time.time()
        logger.info("Realtime session configured")
        return True

    async def _handshake(self) -> None:
        update = SessionUpdateMessage(session=self.session_config)
        try:
            await self.ws.send(update.model_dump_json(exclude_none=True))
        except Exception as e:
            raise LinkHandshakeFailed(f"Could not send session configuration: {e}") from e
        logger.debug("Session configuration sent")

        deadline = time.monotonic() + self.handshake_timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LinkHandshakeFailed(
                    f"No session.updated within {self.handshake_timeout}s"
                )
            try:
                raw = await asyncio.wait_for(self.ws.recv(), timeout=remaining)
            except asyncio.TimeoutError:
                continue
            except ConnectionClosed as e:
                raise LinkHandshakeFailed(
                    f"Provider closed the socket during handshake (code: {_close_code(e)})"
                ) from e

            if isinstance(raw, bytes):
                continue
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"Received invalid JSON during handshake: {raw[:100]}...")
                continue

            message_type = message.get("type")
            if message_type == MESSAGE_TYPE_SESSION_UPDATED:
                return
            if message_type == MESSAGE_TYPE_ERROR:
                raise LinkHandshakeFailed(describe_error(message))
            if message_type == MESSAGE_TYPE_SESSION_CREATED:
                logger.debug("Realtime session created")

    async def append_audio(self, audio: bytes) -> bool:
        """
        Append audio to the provider's input buffer.

        Args:
            audio: Audio bytes in the configured input format

        Returns:
            bool: True if the audio was sent, False otherwise
        """
        if not self._connection_active or self.ws is None:
            logger.warning("Cannot send audio - connection not active")
            return False

        message = InputAudioBufferAppendMessage(audio=base64.b64encode(audio).decode("utf-8"))
        try:
            await asyncio.wait_for(self.ws.send(message.model_dump_json()), timeout=self.send_timeout)
            self._last_activity = time.time()
            return True
        except asyncio.TimeoutError:
            logger.warning("Timeout while sending audio chunk")
            return False
        except ConnectionClosed as e:
            logger.warning(f"Connection closed while sending audio: {e}")
            self._connection_active = False
            return False
        except Exception as e:
            logger.error(f"Error sending audio chunk: {e}")
            return False

    async def receive_event(self) -> AIEvent:
        """
        Await the next normalised event from the provider.

        Server events without a counterpart are skipped. A dropped socket is
        reported as a closed event and any other transport failure as a fatal
        error event; this method does not raise.
        """
        while True:
            if self.ws is None or not self._connection_active:
                return AIEvent(kind=AIEventKind.CLOSED, code=CLOSE_CODE_NORMAL)
            try:
                raw = await self.ws.recv()
            except asyncio.CancelledError:
                raise
            except ConnectionClosed as e:
                code = _close_code(e)
                logger.info(f"Realtime socket closed (code: {code})")
                self._connection_active = False
                return AIEvent(kind=AIEventKind.CLOSED, code=code)
            except Exception as e:
                logger.error(f"Error in receive loop: {e}")
                logger.debug(f"Receive error details: {traceback.format_exc()}")
                self._connection_active = False
                return AIEvent(kind=AIEventKind.ERROR, detail=str(e), fatal=True)

            self._last_activity = time.time()
            if isinstance(raw, bytes):
                logger.debug(f"Ignoring binary message of size {len(raw)} bytes")
                continue
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"Received invalid JSON: {raw[:100]}...")
                continue

            message_type = message.get("type")
            handler = self._handlers.get(message_type)
            if handler is None:
                logger.debug(f"Received message of type: {message_type}")
                continue
            event = handler(message)
            if event is not None:
                return event

    def _on_audio_delta(self, message: Dict[str, Any]) -> Optional[AIEvent]:
        delta = message.get("delta")
        if not delta:
            return None
        try:
            audio = base64.b64decode(delta)
        except Exception:
            logger.warning("Discarding audio delta with invalid base64 payload")
            return None
        return AIEvent(kind=AIEventKind.AUDIO_DELTA, audio=audio)

    def _on_text_delta(self, message: Dict[str, Any]) -> Optional[AIEvent]:
        delta = message.get("delta")
        if not delta:
            return None
        return AIEvent(kind=AIEventKind.TEXT_DELTA, text=delta)

    def _on_input_transcription(self, message: Dict[str, Any]) -> Optional[AIEvent]:
        transcript = message.get("transcript")
        if not transcript:
            return None
        return AIEvent(kind=AIEventKind.SUBJECT_TRANSCRIPT, text=transcript)

    def _on_error(self, message: Dict[str, Any]) -> AIEvent:
        detail = describe_error(message)
        logger.error(f"Received error from OpenAI: {detail}")
        return AIEvent(kind=AIEventKind.ERROR, detail=detail, fatal=False)

    async def close(self) -> None:
        """Close the socket within close_timeout, dropping it if the provider does not answer."""
        if self._is_closing:
            return
        logger.info("Closing OpenAI Realtime link")
        self._is_closing = True
        self._connection_active = False
        await self._drop_socket()

    async def _drop_socket(self) -> None:
        ws, self.ws = self.ws, None
        if ws is None:
            return
        try:
            await asyncio.wait_for(ws.close(), timeout=self.close_timeout)
        except asyncio.TimeoutError:
            logger.warning("Timeout closing realtime socket - aborting transport")
            transport = getattr(ws, "transport", None)
            if transport is not None:
                transport.abort()
        except Exception as e:
            logger.debug(f"Realtime socket already closed: {e}")


def build_realtime_link(session: Session, settings: BridgeSettings) -> RealtimeProviderLink:
    """Default factory used by the bridge to create a session's provider link."""
    if not settings.openai_api_key:
        logger.error("OPENAI_API_KEY environment variable not set")
        raise ValueError("OPENAI_API_KEY environment variable not set")
    return RealtimeProviderLink(
        api_key=settings.openai_api_key,
        model=settings.realtime_model,
        session_config=build_session_config(session, settings),
        url=settings.realtime_url,
        connect_timeout=settings.connect_timeout_seconds,
        handshake_timeout=settings.handshake_timeout_seconds,
        send_timeout=settings.link_send_timeout_seconds,
        close_timeout=settings.link_close_timeout_seconds,
    )
