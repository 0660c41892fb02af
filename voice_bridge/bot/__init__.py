"""
Bot module for bridging telephony media streams with the OpenAI Realtime API.

This module provides the components that run a bridged call end to end.

Key components:
- AudioCodec: Pure conversion between the telephony encoding (8 kHz G.711 μ-law)
  and the provider encoding, plus fixed-size framing of outbound audio.
- RealtimeProviderLink: One WebSocket to the OpenAI Realtime API per session,
  sending the session configuration and normalising provider events.
- SessionController: The per-call state machine that relays audio, assembles the
  transcript and tears the call down.
- BridgeService: Entry point for starting, attaching and ending sessions.

Usage examples:
```python
from voice_bridge.bot import bridge

async def place_call(subject_id, call_ref):
    # Register the session before the telephony provider dials back
    session_id = await bridge.start_session(subject_id, call_ref)
    stream_url = bridge.stream_url(session_id)

    # ... hand stream_url to the telephony provider ...

    # End the call from outside if needed
    await bridge.end_session(session_id)
```
"""

from voice_bridge.bot.audio_codec import AudioCodec
from voice_bridge.bot.bridge_service import BridgeService, bridge
from voice_bridge.bot.realtime_api import RealtimeProviderLink
from voice_bridge.bot.session_controller import SessionController

__all__ = ["AudioCodec", "BridgeService", "RealtimeProviderLink", "SessionController", "bridge"]
