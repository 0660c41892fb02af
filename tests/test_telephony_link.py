"""
Unit tests for the Twilio media-stream link.

These verify event normalisation on the inbound side and the outbound media
envelope with its pacing metadata.
"""

import asyncio
import base64
import json
from unittest.mock import AsyncMock

import pytest

from voice_bridge.models.events import TelephonyEventKind
from voice_bridge.services.telephony_link import TelephonyLink


@pytest.fixture
def link(mock_websocket):
    return TelephonyLink(mock_websocket, frame_duration_ms=20, send_timeout=0.2, close_timeout=0.2)


@pytest.mark.asyncio
async def test_connected_and_start_events(link, mock_websocket):
    mock_websocket.push_event({"event": "connected", "protocol": "Call", "version": "1.0.0"})
    mock_websocket.push_start(stream_sid="SD1", call_sid="CA42")

    connected = await link.receive_event()
    start = await link.receive_event()

    assert connected.kind is TelephonyEventKind.CONNECTED
    assert start.kind is TelephonyEventKind.START
    assert start.stream_sid == "SD1"
    assert start.call_sid == "CA42"
    assert link.stream_sid == "SD1"


@pytest.mark.asyncio
async def test_media_events_carry_decoded_payload_and_sequence(link, mock_websocket):
    mock_websocket.push_media(b"\x01\x02\x03")
    mock_websocket.push_media(b"\x04\x05")

    first = await link.receive_event()
    second = await link.receive_event()

    assert first.kind is TelephonyEventKind.MEDIA
    assert first.payload == b"\x01\x02\x03"
    assert (first.sequence, second.sequence) == (0, 1)


@pytest.mark.asyncio
async def test_binary_frames_are_media(link, mock_websocket):
    mock_websocket.incoming.put_nowait({"type": "websocket.receive", "bytes": b"\xff" * 160})

    event = await link.receive_event()

    assert event.kind is TelephonyEventKind.MEDIA
    assert event.payload == b"\xff" * 160


@pytest.mark.asyncio
async def test_invalid_and_unknown_messages_are_skipped(link, mock_websocket):
    """Test malformed envelopes are skipped rather than surfaced."""
    mock_websocket.incoming.put_nowait({"type": "websocket.receive", "text": "not json"})
    mock_websocket.push_event({"event": "mark", "mark": {"name": "done"}})
    mock_websocket.push_event({"event": "start", "streamSid": "  "})
    mock_websocket.push_event({"event": "media", "media": {"payload": "***"}})
    mock_websocket.push_stop()

    event = await link.receive_event()

    assert event.kind is TelephonyEventKind.STOP
    assert event.is_terminal


@pytest.mark.asyncio
async def test_disconnect_is_reported_as_closed(link, mock_websocket):
    mock_websocket.disconnect(code=1006)

    event = await link.receive_event()

    assert event.kind is TelephonyEventKind.CLOSED
    assert event.code == 1006
    assert link.is_closed


@pytest.mark.asyncio
async def test_receive_error_is_fatal_error_event(mock_websocket):
    mock_websocket.receive = AsyncMock(side_effect=RuntimeError("transport reset"))
    link = TelephonyLink(mock_websocket)

    event = await link.receive_event()

    assert event.kind is TelephonyEventKind.ERROR
    assert event.fatal is True
    assert "transport reset" in event.detail


@pytest.mark.asyncio
async def test_send_audio_requires_started_stream(link, mock_websocket):
    assert await link.send_audio(b"\xff" * 160) is False
    assert mock_websocket.sent_messages == []


@pytest.mark.asyncio
async def test_send_audio_envelope(link, mock_websocket):
    """Test outbound frames use the Twilio media envelope with string chunk and timestamp."""
    mock_websocket.push_start(stream_sid="SD1")
    await link.receive_event()

    assert await link.send_audio(b"\x01" * 160) is True
    assert await link.send_audio(b"\x02" * 160) is True

    first, second = mock_websocket.sent_messages
    assert first == {
        "event": "media",
        "streamSid": "SD1",
        "media": {
            "track": "outbound",
            "chunk": "0",
            "timestamp": "0",
            "payload": base64.b64encode(b"\x01" * 160).decode("utf-8"),
        },
    }
    assert second["media"]["chunk"] == "1"
    assert second["media"]["timestamp"] == "20"
    assert link.chunks_sent == 2


@pytest.mark.asyncio
async def test_send_failure_returns_false(link, mock_websocket):
    mock_websocket.push_start()
    await link.receive_event()
    mock_websocket.send_text = AsyncMock(side_effect=RuntimeError("broken pipe"))

    assert await link.send_audio(b"\xff") is False


@pytest.mark.asyncio
async def test_close_is_idempotent(link, mock_websocket):
    await link.close()
    await link.close()

    assert mock_websocket.close_calls == 1
    assert await link.send_audio(b"\xff") is False
    event = await link.receive_event()
    assert event.kind is TelephonyEventKind.CLOSED


@pytest.mark.asyncio
async def test_close_tolerates_dead_transport(mock_websocket):
    mock_websocket.close = AsyncMock(side_effect=RuntimeError("already closed"))
    link = TelephonyLink(mock_websocket)

    await link.close(code=1008)

    assert link.is_closed


@pytest.mark.asyncio
async def test_close_is_bounded_when_socket_hangs(mock_websocket):
    async def hang(code=1000):
        await asyncio.Event().wait()

    mock_websocket.close = hang
    link = TelephonyLink(mock_websocket, close_timeout=0.05)

    await asyncio.wait_for(link.close(), timeout=1.0)
    assert link.is_closed
