"""
WebSocket connection manager for Twilio Media Streams.

This module implements the server side of the media-stream socket the telephony
provider opens once a call connects:
- Accept the connection and tune the underlying TCP socket for low latency
- Wrap it in a TelephonyLink and hand it to the session's controller
- Keep the socket open until the session has ended

Unknown or finished sessions are refused with a policy-violation close.
"""

import logging
import socket

from fastapi import WebSocket

from voice_bridge.bot.bridge_service import BridgeService
from voice_bridge.config.constants import CLOSE_CODE_POLICY_VIOLATION, LOGGER_NAME
from voice_bridge.errors import SessionNotFound
from voice_bridge.services.telephony_link import TelephonyLink

logger = logging.getLogger(LOGGER_NAME)


class WebSocketManager:
    """Routes media-stream connections to the sessions they belong to."""

    def __init__(self, bridge: BridgeService):
        self.bridge = bridge

    async def _optimize_socket(self, websocket: WebSocket) -> None:
        """
        Optimize the WebSocket's underlying TCP socket for low-latency transmission.

        Args:
            websocket: The FastAPI WebSocket connection
        """
        try:
            client = websocket.client
            if hasattr(client, "sock") and client.sock is not None:
                # Disable Nagle's algorithm to send packets immediately
                client.sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
                logger.info("Optimized socket: TCP_NODELAY enabled for low latency")
        except Exception as e:
            logger.warning(f"Could not optimize socket: {e}")

    def build_link(self, websocket: WebSocket) -> TelephonyLink:
        settings = self.bridge.settings
        return TelephonyLink(
            websocket,
            frame_duration_ms=settings.frame_duration_ms,
            send_timeout=settings.link_send_timeout_seconds,
            close_timeout=settings.link_close_timeout_seconds,
        )

    async def handle_websocket(self, websocket: WebSocket, session_id: str) -> None:
        """Handle a media-stream connection for the whole call.

        Args:
            websocket (WebSocket): The FastAPI WebSocket connection object
            session_id (str): The session the stream URL was issued for

        The controller owns the socket once attached; this coroutine only waits
        for the session to end so the ASGI server keeps the connection open.
        """
        await websocket.accept()
        await self._optimize_socket(websocket)
        logger.info(f"Media stream connection accepted for session: {session_id}")

        link = self.build_link(websocket)
        try:
            await self.bridge.attach_telephony_link(session_id, link)
        except SessionNotFound:
            logger.warning(f"Media stream for unknown session {session_id} refused")
            await link.close(code=CLOSE_CODE_POLICY_VIOLATION)
            return

        try:
            await self.bridge.wait_until_ended(session_id)
        except Exception as e:
            logger.error(f"Error in media stream connection: {e}", exc_info=True)
            await self.bridge.end_session(session_id)
        finally:
            await link.close()
            logger.info(f"Media stream connection closed for session: {session_id}")
