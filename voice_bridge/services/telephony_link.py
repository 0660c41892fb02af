"""
Telephony media-stream link for one call.

This module wraps the WebSocket on which Twilio Media Streams delivers the call's
audio. Inbound JSON envelopes are validated with the pydantic schemas and
normalised into TelephonyEvents; outbound audio is wrapped in the provider's
media envelope and stamped with the pacing metadata the protocol requires.
Transport failures never escape the link: they surface as error or closed
events, or as a False return from send_audio.
"""

import asyncio
import base64
import json
import logging
from typing import Any, Dict, Optional

from fastapi import WebSocket
from pydantic import ValidationError

from voice_bridge.config.constants import (
    CLOSE_CODE_NORMAL,
    DEFAULT_FRAME_DURATION_MS,
    LOGGER_NAME,
    TELEPHONY_EVENT_CONNECTED,
    TELEPHONY_EVENT_MEDIA,
    TELEPHONY_EVENT_START,
    TELEPHONY_EVENT_STOP,
)
from voice_bridge.models.events import TelephonyEvent, TelephonyEventKind
from voice_bridge.models.message_schemas import (
    INCOMING_EVENT_MODELS,
    MediaEvent,
    OutboundMedia,
    OutboundMediaMessage,
    StartEvent,
)

logger = logging.getLogger(LOGGER_NAME)


class TelephonyLink:
    """
    Adapter around the telephony provider's media-stream socket for a single call.

    The link records the stream identifier from the start event and uses it to
    tag every outbound frame. The outbound chunk counter lives on the link, and
    a link serves exactly one session, so the counter never resets across
    provider response turns.
    """

    def __init__(
        self,
        websocket: WebSocket,
        frame_duration_ms: int = DEFAULT_FRAME_DURATION_MS,
        send_timeout: float = 5.0,
        close_timeout: float = 2.0,
    ):
        self.websocket = websocket
        self.frame_duration_ms = frame_duration_ms
        self.send_timeout = send_timeout
        self.close_timeout = close_timeout
        self.stream_sid: Optional[str] = None
        self.call_sid: Optional[str] = None
        self._chunk_counter = 0
        self._inbound_counter = 0
        self._closed = False

        self._parsers = {
            TELEPHONY_EVENT_CONNECTED: self._on_connected,
            TELEPHONY_EVENT_START: self._on_start,
            TELEPHONY_EVENT_MEDIA: self._on_media,
            TELEPHONY_EVENT_STOP: self._on_stop,
        }

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def chunks_sent(self) -> int:
        return self._chunk_counter

    async def receive_event(self) -> TelephonyEvent:
        """
        Await the next recognised event from the telephony provider.

        Unknown or malformed envelopes are logged and skipped. A dropped
        transport is reported as a closed event; this method does not raise.
        """
        while True:
            if self._closed:
                return TelephonyEvent(kind=TelephonyEventKind.CLOSED, code=CLOSE_CODE_NORMAL)
            try:
                message = await self.websocket.receive()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error receiving from telephony socket: {e}")
                return TelephonyEvent(
                    kind=TelephonyEventKind.ERROR, detail=str(e), fatal=True
                )

            if message.get("type") == "websocket.disconnect":
                code = message.get("code", CLOSE_CODE_NORMAL)
                logger.info(f"Telephony socket disconnected (code: {code})")
                self._closed = True
                return TelephonyEvent(kind=TelephonyEventKind.CLOSED, code=code)

            if message.get("bytes") is not None:
                # Raw binary frames carry audio directly
                return self._media_event(message["bytes"])

            text = message.get("text")
            if not text:
                continue
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                logger.warning(f"Received invalid JSON from telephony provider: {text[:100]}...")
                continue

            event_type = data.get("event")
            parser = self._parsers.get(event_type)
            if parser is None:
                logger.debug(f"Ignoring telephony event: {event_type}")
                continue
            try:
                return parser(data)
            except ValidationError as e:
                logger.warning(f"Invalid telephony {event_type} event: {e}")
                continue

    def _on_connected(self, data: Dict[str, Any]) -> TelephonyEvent:
        INCOMING_EVENT_MODELS[TELEPHONY_EVENT_CONNECTED](**data)
        logger.info("Telephony media stream connected")
        return TelephonyEvent(kind=TelephonyEventKind.CONNECTED)

    def _on_start(self, data: Dict[str, Any]) -> TelephonyEvent:
        start = StartEvent(**data)
        self.stream_sid = start.streamSid
        self.call_sid = start.start.callSid if start.start else None
        logger.info(f"Telephony stream started: {self.stream_sid} (call: {self.call_sid})")
        return TelephonyEvent(
            kind=TelephonyEventKind.START,
            stream_sid=self.stream_sid,
            call_sid=self.call_sid,
        )

    def _on_media(self, data: Dict[str, Any]) -> TelephonyEvent:
        media = MediaEvent(**data).media
        return self._media_event(base64.b64decode(media.payload))

    def _on_stop(self, data: Dict[str, Any]) -> TelephonyEvent:
        INCOMING_EVENT_MODELS[TELEPHONY_EVENT_STOP](**data)
        logger.info(f"Telephony stream stopped: {self.stream_sid}")
        return TelephonyEvent(kind=TelephonyEventKind.STOP, stream_sid=self.stream_sid)

    def _media_event(self, payload: bytes) -> TelephonyEvent:
        sequence = self._inbound_counter
        self._inbound_counter += 1
        return TelephonyEvent(kind=TelephonyEventKind.MEDIA, payload=payload, sequence=sequence)

    async def send_audio(self, frame: bytes) -> bool:
        """
        Send one encoded audio frame back to the caller.

        The frame is stamped with the next chunk number and a timestamp that
        advances by one nominal frame duration per chunk.

        Returns:
            bool: True if the frame was sent, False otherwise
        """
        if self._closed:
            logger.debug("Dropping outbound frame - telephony link closed")
            return False
        if not self.stream_sid:
            logger.warning("Cannot send audio - telephony stream has not started")
            return False

        chunk = self._chunk_counter
        self._chunk_counter += 1
        message = OutboundMediaMessage(
            streamSid=self.stream_sid,
            media=OutboundMedia(
                chunk=str(chunk),
                timestamp=str(chunk * self.frame_duration_ms),
                payload=base64.b64encode(frame).decode("utf-8"),
            ),
        )
        try:
            await asyncio.wait_for(
                self.websocket.send_text(message.model_dump_json()),
                timeout=self.send_timeout,
            )
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Timeout sending outbound chunk {chunk} to telephony provider")
            return False
        except Exception as e:
            logger.error(f"Error sending outbound chunk {chunk}: {e}")
            return False

    async def close(self, code: int = CLOSE_CODE_NORMAL) -> None:
        """Close the socket. Safe to call repeatedly and on an already-dropped transport."""
        if self._closed:
            return
        self._closed = True
        try:
            await asyncio.wait_for(self.websocket.close(code=code), timeout=self.close_timeout)
            logger.info(f"Telephony link closed for stream: {self.stream_sid}")
        except asyncio.TimeoutError:
            logger.warning(f"Timeout closing telephony link for stream: {self.stream_sid}")
        except Exception as e:
            logger.debug(f"Telephony socket already closed: {e}")
