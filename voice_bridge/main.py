"""
FastAPI server for the real-time voice session bridge.

This module initializes and configures the FastAPI application that connects
Twilio phone calls to the OpenAI Realtime API. It exposes:
- The REST API used to start, inspect and end sessions
- The call-setup markup Twilio fetches when a call is answered
- The media-stream WebSocket Twilio connects to for the call's audio

On shutdown every live session is ended so its outcome is persisted.
"""

import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, WebSocket

from voice_bridge.bot.bridge_service import BridgeService, bridge, get_bridge
from voice_bridge.config.logging_config import configure_logging
from voice_bridge.config.settings import load_env_file
from voice_bridge.handlers import session_handlers, twiml_handlers
from voice_bridge.websocket_manager import WebSocketManager

load_env_file()

# Configure logging
logger = configure_logging()

# Get configuration from environment variables
PORT = int(os.getenv("PORT", "8000"))
HOST = os.getenv("HOST", "0.0.0.0")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Voice session bridge starting")
    yield
    await bridge.shutdown()
    logger.info("Voice session bridge stopped")


# Create FastAPI application
app = FastAPI(
    title="Real-Time Voice Session Bridge",
    description="Bridge between Twilio Media Streams and the OpenAI Realtime API",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(session_handlers.router)
app.include_router(twiml_handlers.router)


@app.websocket("/media-stream/{session_id}")
async def media_stream_endpoint(
    websocket: WebSocket,
    session_id: str,
    bridge: BridgeService = Depends(get_bridge),
):
    """WebSocket endpoint Twilio connects the call's media stream to.

    The connection stays open until the session ends. Unknown sessions are
    closed with a policy-violation code.
    """
    await WebSocketManager(bridge).handle_websocket(websocket, session_id)


@app.get("/health")
async def health_check(bridge: BridgeService = Depends(get_bridge)):
    """Health check endpoint for monitoring system status.

    Returns:
        dict: Status information including the number of live sessions.
    """
    return {
        "status": "healthy",
        "openai_api_key_configured": bool(bridge.settings.openai_api_key),
        "active_sessions": bridge.active_count,
        "max_active_sessions": bridge.settings.max_active_sessions,
    }


@app.get("/")
async def root():
    """Root endpoint to display basic information about the API."""
    return {
        "name": "Real-Time Voice Session Bridge",
        "description": "Bridge between Twilio Media Streams and the OpenAI Realtime API",
        "version": "1.0.0",
        "endpoints": {
            "/sessions": "Start (POST) or list (GET) sessions",
            "/sessions/{session_id}": "Session status",
            "/sessions/{session_id}/end": "End a session",
            "/subjects/{subject_id}/sessions": "Force-evict a subject's sessions (DELETE)",
            "/twiml/{session_id}": "Call-setup markup for Twilio",
            "/media-stream/{session_id}": "WebSocket endpoint for Twilio Media Streams",
            "/health": "Health check endpoint",
        },
    }


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting server on http://{HOST}:{PORT}")
    uvicorn.run(
        app,
        host=HOST,
        port=PORT,
        ws_ping_interval=5,
        ws_ping_timeout=20,
        ws_max_size=16 * 1024 * 1024,
        http="h11",
    )
