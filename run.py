"""
Launcher for the voice session bridge.

Loads .env, validates the bridge settings up front so a misconfigured deployment
fails before Twilio starts dialling in, then hands the app to uvicorn.

Usage:
    python run.py [--port PORT] [--host HOST] [--log-level LEVEL] [--reload]
"""

import argparse
import os
import sys

import uvicorn
from pydantic import ValidationError

from voice_bridge.config.logging_config import configure_logging
from voice_bridge.config.settings import BridgeSettings, load_env_file

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Start the real-time voice session bridge")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", "8000")),
        help="Port to listen on (default: PORT env var or 8000)",
    )
    parser.add_argument(
        "--host",
        default=os.getenv("HOST", "0.0.0.0"),
        help="Interface to bind (default: HOST env var or 0.0.0.0)",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        default=os.getenv("LOG_LEVEL", "INFO").upper(),
        choices=LOG_LEVELS,
        help="Logging level (default: LOG_LEVEL env var or INFO)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Restart on code changes (development only)",
    )
    return parser.parse_args(argv)


def main(argv=None):
    load_env_file()
    args = parse_args(argv)
    logger = configure_logging(args.log_level)

    try:
        settings = BridgeSettings.from_env()
    except ValidationError as e:
        logger.error(f"Invalid bridge configuration: {e}")
        sys.exit(1)

    if not settings.openai_api_key:
        logger.error("OPENAI_API_KEY environment variable not set")
        sys.exit(1)

    logger.info(f"Starting voice session bridge on http://{args.host}:{args.port}")
    logger.info(f"Media streams will connect to {settings.stream_url('{session_id}')}")
    logger.info(
        f"Limits: {settings.max_active_sessions} sessions, "
        f"{settings.max_session_lifetime_seconds:.0f}s max lifetime"
    )

    uvicorn.run(
        "voice_bridge.main:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
        reload=args.reload,
        access_log=False,
        http="h11",
        ws_max_size=16 * 1024 * 1024,
        ws_ping_interval=5,
        ws_ping_timeout=20,
    )


if __name__ == "__main__":
    main()
