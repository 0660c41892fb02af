"""
Real-Time Voice Session Bridge - Twilio Media Streams to OpenAI Realtime API

This package places the backend between a telephony provider that streams live
call audio over a WebSocket and OpenAI's Realtime API. For every outbound call it
creates one session that relays caller audio to the speech-AI provider, streams the
synthesized replies back in paced 20ms frames, assembles a transcript and hands
the final record to a persistence collaborator when the call ends.

Architecture Overview:
- FastAPI server exposing the session REST API, the call-setup markup and the
  media-stream WebSocket endpoint
- One SessionController per call, driven by a single asyncio worker task
- A SessionStore guaranteeing at most one live session per subject (patient)
- Pure audio codec functions for μ-law / PCM16 translation and frame chunking

Key Components:
- bot: Realtime provider link, audio codec, session controller and bridge service
- config: Application-wide constants, environment settings and logging setup
- handlers: HTTP route handlers for sessions and TwiML markup
- models: Protocol schemas, session model, session store and transcript assembler
- services: Telephony media-stream link and call outcome persistence
- websocket_manager: Accepts media-stream sockets and attaches them to sessions

Getting Started:
1. Set up environment variables:
   - OPENAI_API_KEY: Your OpenAI API key
   - PUBLIC_BASE_URL: Public https URL Twilio can reach (used for the stream URL)
   - PORT / HOST / LOG_LEVEL: Server options

2. Start the server:
   ```bash
   python run.py
   ```

3. Create a session with POST /sessions, place the call with Twilio pointing the
   voice URL at POST /twiml/{sessionId}, and the bridge does the rest.
"""
