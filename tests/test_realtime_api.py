"""
Unit tests for the OpenAI Realtime API provider link.

These verify the session.update handshake, the single-socket guarantee, audio
appends and the normalisation of server events.
"""

import asyncio
import base64
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from websockets.exceptions import ConnectionClosedError
from websockets.frames import Close

from voice_bridge.bot.realtime_api import (
    RealtimeProviderLink,
    build_instructions,
    build_realtime_link,
    build_session_config,
)
from voice_bridge.config.settings import BridgeSettings
from voice_bridge.errors import LinkHandshakeFailed
from voice_bridge.models.events import AIEventKind
from voice_bridge.models.session import Session


def server_event(event_type, **fields):
    return json.dumps({"type": event_type, **fields})


@pytest.fixture
def session():
    return Session(subject_id="p1", call_ref="call-42", subject_name="Jane Doe")


@pytest.fixture
def settings():
    return BridgeSettings(openai_api_key="test-api-key")


@pytest.fixture
def mock_ws():
    ws = AsyncMock()
    ws.transport = MagicMock()
    ws.recv.side_effect = [
        server_event("session.created"),
        server_event("session.updated"),
    ]
    return ws


@pytest.fixture
def realtime_link(session, settings):
    return RealtimeProviderLink(
        api_key="test-api-key",
        model="gpt-4o-realtime-preview-test",
        session_config=build_session_config(session, settings),
        connect_timeout=0.2,
        handshake_timeout=0.2,
        send_timeout=0.2,
        close_timeout=0.05,
    )


@pytest.mark.asyncio
async def test_connect_sends_session_update_and_waits_for_ack(realtime_link, mock_ws):
    """Test the configuration handshake completes on session.updated."""
    with patch("websockets.connect", AsyncMock(return_value=mock_ws)) as mock_connect:
        result = await realtime_link.connect()

    assert result is True
    assert realtime_link.is_open
    url = mock_connect.call_args.args[0]
    assert url == "wss://api.openai.com/v1/realtime?model=gpt-4o-realtime-preview-test"
    headers = mock_connect.call_args.kwargs["additional_headers"]
    assert headers["Authorization"] == "Bearer test-api-key"
    assert headers["OpenAI-Beta"] == "realtime=v1"

    update = json.loads(mock_ws.send.call_args_list[0].args[0])
    assert update["type"] == "session.update"
    config = update["session"]
    assert config["modalities"] == ["text", "audio"]
    assert config["voice"] == "alloy"
    assert config["input_audio_format"] == "g711_ulaw"
    assert config["output_audio_format"] == "g711_ulaw"
    assert config["input_audio_transcription"] == {"model": "whisper-1"}
    assert config["turn_detection"] == {
        "type": "server_vad",
        "threshold": 0.7,
        "prefix_padding_ms": 200,
        "silence_duration_ms": 1200,
    }
    assert "Jane Doe" in config["instructions"]


@pytest.mark.asyncio
async def test_second_connect_is_noop(realtime_link, mock_ws):
    """Test only one socket is opened per link."""
    with patch("websockets.connect", AsyncMock(return_value=mock_ws)) as mock_connect:
        assert await realtime_link.connect() is True
        assert await realtime_link.connect() is False

    assert mock_connect.call_count == 1


@pytest.mark.asyncio
async def test_connect_while_pending_is_noop(realtime_link, mock_ws):
    gate = asyncio.Event()

    async def slow_connect(*args, **kwargs):
        await gate.wait()
        return mock_ws

    with patch("websockets.connect", side_effect=slow_connect) as mock_connect:
        first = asyncio.create_task(realtime_link.connect())
        await asyncio.sleep(0)
        assert await realtime_link.connect() is False
        gate.set()
        assert await first is True

    assert mock_connect.call_count == 1


@pytest.mark.asyncio
async def test_connect_failure_raises_handshake_failed(realtime_link):
    with patch("websockets.connect", AsyncMock(side_effect=OSError("Connection refused"))):
        with pytest.raises(LinkHandshakeFailed):
            await realtime_link.connect()

    assert not realtime_link.is_open


@pytest.mark.asyncio
async def test_connect_timeout(realtime_link):
    """Test an unreachable endpoint fails after the configured connect timeout."""
    async def never_connects(*args, **kwargs):
        await asyncio.Event().wait()

    with patch("websockets.connect", side_effect=never_connects):
        with pytest.raises(LinkHandshakeFailed, match="Timeout while connecting"):
            await asyncio.wait_for(realtime_link.connect(), timeout=2.0)

    assert not realtime_link.is_open
    assert realtime_link.ws is None


@pytest.mark.asyncio
async def test_provider_error_during_handshake(realtime_link, mock_ws):
    """Test a rejected configuration fails the handshake and drops the socket."""
    mock_ws.recv.side_effect = [
        server_event("error", error={"type": "invalid_request_error", "message": "Invalid voice"}),
    ]
    with patch("websockets.connect", AsyncMock(return_value=mock_ws)):
        with pytest.raises(LinkHandshakeFailed, match="Invalid voice"):
            await realtime_link.connect()

    mock_ws.close.assert_awaited_once()
    assert realtime_link.ws is None


@pytest.mark.asyncio
async def test_handshake_timeout(realtime_link, mock_ws):
    async def never():
        await asyncio.Event().wait()

    mock_ws.recv = never
    with patch("websockets.connect", AsyncMock(return_value=mock_ws)):
        with pytest.raises(LinkHandshakeFailed, match="session.updated"):
            await realtime_link.connect()


@pytest.mark.asyncio
async def test_append_audio(realtime_link, mock_ws):
    with patch("websockets.connect", AsyncMock(return_value=mock_ws)):
        await realtime_link.connect()

    assert await realtime_link.append_audio(b"\xff" * 160) is True

    message = json.loads(mock_ws.send.call_args_list[-1].args[0])
    assert message == {
        "type": "input_audio_buffer.append",
        "audio": base64.b64encode(b"\xff" * 160).decode("utf-8"),
    }


@pytest.mark.asyncio
async def test_append_audio_before_connect(realtime_link):
    assert await realtime_link.append_audio(b"\xff") is False


@pytest.mark.asyncio
async def test_append_audio_on_closed_socket(realtime_link, mock_ws):
    with patch("websockets.connect", AsyncMock(return_value=mock_ws)):
        await realtime_link.connect()
    mock_ws.send.side_effect = ConnectionClosedError(Close(1011, "server error"), None)

    assert await realtime_link.append_audio(b"\xff") is False
    assert not realtime_link.is_open


@pytest.mark.asyncio
async def test_receive_event_normalises_server_events(realtime_link, mock_ws):
    """Test each server event type maps onto its normalised event."""
    with patch("websockets.connect", AsyncMock(return_value=mock_ws)):
        await realtime_link.connect()

    mock_ws.recv.side_effect = [
        server_event("response.created"),
        server_event("response.audio.delta", delta=base64.b64encode(b"\x01\x02").decode("utf-8")),
        server_event("response.audio_transcript.delta", delta="Hello"),
        server_event("response.text.delta", delta=" there"),
        server_event("response.audio.done"),
        server_event("response.done"),
        server_event(
            "conversation.item.input_audio_transcription.completed", transcript="I feel fine"
        ),
        server_event("error", error={"type": "server_error", "message": "hiccup"}),
        ConnectionClosedError(Close(1011, "server error"), None),
    ]

    events = [await realtime_link.receive_event() for _ in range(8)]

    assert [e.kind for e in events] == [
        AIEventKind.AUDIO_DELTA,
        AIEventKind.TEXT_DELTA,
        AIEventKind.TEXT_DELTA,
        AIEventKind.AUDIO_DONE,
        AIEventKind.TURN_DONE,
        AIEventKind.SUBJECT_TRANSCRIPT,
        AIEventKind.ERROR,
        AIEventKind.CLOSED,
    ]
    assert events[0].audio == b"\x01\x02"
    assert events[1].text == "Hello"
    assert events[5].text == "I feel fine"
    assert events[6].fatal is False
    assert events[6].detail == "server_error: hiccup"
    assert events[7].code == 1011
    assert events[7].is_terminal


@pytest.mark.asyncio
async def test_receive_error_is_fatal(realtime_link, mock_ws):
    with patch("websockets.connect", AsyncMock(return_value=mock_ws)):
        await realtime_link.connect()
    mock_ws.recv.side_effect = [RuntimeError("decoder crashed")]

    event = await realtime_link.receive_event()

    assert event.kind is AIEventKind.ERROR
    assert event.fatal is True


@pytest.mark.asyncio
async def test_close_is_idempotent(realtime_link, mock_ws):
    with patch("websockets.connect", AsyncMock(return_value=mock_ws)):
        await realtime_link.connect()

    await realtime_link.close()
    await realtime_link.close()

    mock_ws.close.assert_awaited_once()
    event = await realtime_link.receive_event()
    assert event.kind is AIEventKind.CLOSED


@pytest.mark.asyncio
async def test_close_aborts_unresponsive_socket(realtime_link, mock_ws):
    with patch("websockets.connect", AsyncMock(return_value=mock_ws)):
        await realtime_link.connect()

    async def hang():
        await asyncio.Event().wait()

    mock_ws.close = hang
    await asyncio.wait_for(realtime_link.close(), timeout=1.0)

    mock_ws.transport.abort.assert_called_once()


@pytest.mark.asyncio
async def test_connect_after_close_fails(realtime_link):
    await realtime_link.close()
    with pytest.raises(LinkHandshakeFailed):
        await realtime_link.connect()


def test_custom_instructions_used_when_long_enough(session):
    session.custom_instructions = "  Ask about the new beta blocker dosage.  "
    assert build_instructions(session) == "Ask about the new beta blocker dosage."


def test_short_custom_instructions_fall_back_to_default(session):
    session.custom_instructions = "hi"
    instructions = build_instructions(session)
    assert "Jane Doe" in instructions
    assert "nurse assistant" in instructions


def test_session_config_follows_settings(session):
    settings = BridgeSettings(provider_audio_format="pcm16", voice="verse", vad_threshold=0.5)
    config = build_session_config(session, settings)

    assert config.input_audio_format == "pcm16"
    assert config.output_audio_format == "pcm16"
    assert config.voice == "verse"
    assert config.turn_detection.threshold == 0.5


def test_build_realtime_link_requires_api_key(session):
    with pytest.raises(ValueError):
        build_realtime_link(session, BridgeSettings(openai_api_key=None))

    link = build_realtime_link(session, BridgeSettings(openai_api_key="sk-test"))
    assert isinstance(link, RealtimeProviderLink)
    assert link.api_key == "sk-test"


def test_build_realtime_link_uses_settings_timeouts(session):
    settings = BridgeSettings(
        openai_api_key="sk-test",
        connect_timeout_seconds=7.5,
        handshake_timeout_seconds=4.0,
        link_send_timeout_seconds=1.5,
        link_close_timeout_seconds=0.5,
    )
    link = build_realtime_link(session, settings)

    assert link.connect_timeout == 7.5
    assert link.handshake_timeout == 4.0
    assert link.send_timeout == 1.5
    assert link.close_timeout == 0.5
