"""
Call-setup markup for the telephony provider.

When the outbound call is answered, Twilio fetches this markup to learn where to
connect the call's media stream. The markup carries no greeting; the first agent
utterance always comes from the speech-AI provider.
"""

import logging
from xml.sax.saxutils import escape, quoteattr

from fastapi import APIRouter, Depends, Response

from voice_bridge.bot.bridge_service import BridgeService, get_bridge
from voice_bridge.config.constants import LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)

router = APIRouter(tags=["twiml"])

XML_MEDIA_TYPE = "application/xml"
XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'


def build_stream_twiml(stream_url: str) -> str:
    """Markup connecting the call's media stream to the given socket URL."""
    return (
        f"{XML_DECLARATION}\n"
        "<Response>\n"
        "  <Connect>\n"
        f"    <Stream url={quoteattr(stream_url)} />\n"
        "  </Connect>\n"
        "</Response>"
    )


def build_hangup_twiml(message: str) -> str:
    return (
        f"{XML_DECLARATION}\n"
        "<Response>\n"
        f"  <Say>{escape(message)}</Say>\n"
        "  <Hangup />\n"
        "</Response>"
    )


@router.api_route("/twiml/{session_id}", methods=["GET", "POST"])
async def handle_twiml(session_id: str, bridge: BridgeService = Depends(get_bridge)) -> Response:
    """
    Return the <Connect><Stream> markup for a session.

    Unknown or ended sessions get markup that ends the call instead.
    """
    session = bridge.get_session(session_id)
    if session is None or session.is_terminating:
        logger.warning(f"Markup requested for unknown session: {session_id}")
        return Response(
            content=build_hangup_twiml("Sorry, this call session was not found. Goodbye."),
            media_type=XML_MEDIA_TYPE,
        )

    stream_url = bridge.stream_url(session_id)
    logger.info(f"Serving stream markup for session {session_id}: {stream_url}")
    return Response(content=build_stream_twiml(stream_url), media_type=XML_MEDIA_TYPE)
