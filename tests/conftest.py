import asyncio
import base64
import json
import logging

import pytest

from voice_bridge.config.settings import BridgeSettings
from voice_bridge.errors import LinkHandshakeFailed
from voice_bridge.models.events import AIEvent


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration before each test"""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    logging.basicConfig(level=logging.NOTSET)
    yield


class MockWebSocket:
    """Stands in for the FastAPI WebSocket Twilio connects on."""

    def __init__(self):
        self.incoming = asyncio.Queue()
        self.sent_messages = []
        self.closed = False
        self.close_code = None
        self.close_calls = 0
        self.accepted = False
        self.client = None

    async def accept(self):
        self.accepted = True

    async def receive(self):
        return await self.incoming.get()

    async def send_text(self, text):
        self.sent_messages.append(json.loads(text))

    async def close(self, code=1000):
        self.close_calls += 1
        self.closed = True
        self.close_code = code

    def push_event(self, data):
        self.incoming.put_nowait({"type": "websocket.receive", "text": json.dumps(data)})

    def push_start(self, stream_sid="SD1", call_sid="CA1"):
        self.push_event({"event": "start", "streamSid": stream_sid, "start": {"callSid": call_sid}})

    def push_media(self, payload: bytes):
        self.push_event({
            "event": "media",
            "streamSid": "SD1",
            "media": {"payload": base64.b64encode(payload).decode("utf-8")},
        })

    def push_stop(self):
        self.push_event({"event": "stop", "streamSid": "SD1"})

    def disconnect(self, code=1006):
        self.incoming.put_nowait({"type": "websocket.disconnect", "code": code})


class FakeAILink:
    """In-memory speech-AI link. connect() blocks until the handshake is acknowledged."""

    def __init__(self, auto_ack=True, fail_handshake=False):
        self.appended = []
        self.events = asyncio.Queue()
        self.connect_calls = 0
        self.close_calls = 0
        self.fail_handshake = fail_handshake
        self.handshake = asyncio.Event()
        if auto_ack:
            self.handshake.set()

    async def connect(self):
        self.connect_calls += 1
        await self.handshake.wait()
        if self.fail_handshake:
            raise LinkHandshakeFailed("invalid_request_error: bad session configuration")
        return True

    async def append_audio(self, audio):
        self.appended.append(audio)
        return True

    async def receive_event(self):
        return await self.events.get()

    async def close(self):
        self.close_calls += 1

    def emit(self, kind, **fields):
        self.events.put_nowait(AIEvent(kind=kind, **fields))


class RecordingOutcomeStore:
    def __init__(self, fail=False):
        self.saved = []
        self.fail = fail

    async def save_call_outcome(self, call_ref, outcome):
        self.saved.append((call_ref, outcome))
        if self.fail:
            raise RuntimeError("database unavailable")


@pytest.fixture
def mock_websocket():
    return MockWebSocket()


@pytest.fixture
def outcome_store():
    return RecordingOutcomeStore()


@pytest.fixture
def bridge_settings(tmp_path):
    """Settings with short timeouts so teardown paths finish quickly."""
    return BridgeSettings(
        openai_api_key="test-api-key",
        outbound_frame_bytes=300,
        link_close_timeout_seconds=0.2,
        link_send_timeout_seconds=0.2,
        handshake_timeout_seconds=0.5,
        persistence_timeout_seconds=0.5,
        transcript_dir=str(tmp_path / "conversation_logs"),
    )


@pytest.fixture
def wait_until():
    """Poll a condition until it holds or fail after a timeout."""

    async def _wait_until(predicate, timeout=2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return _wait_until
