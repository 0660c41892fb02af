"""
Configuration module for the voice session bridge.

This module provides centralized configuration management for the bridge,
including constants, environment-based settings and logging setup.

Key components:
- constants: Application-wide constants such as protocol event names, audio
  formats and default provider settings.
- settings: The BridgeSettings model populated from environment variables.
- logging_config: Console and rotating file logging for the whole application.

Usage examples:
```python
from voice_bridge.config.constants import LOGGER_NAME
from voice_bridge.config.logging_config import configure_logging
from voice_bridge.config.settings import BridgeSettings

logger = configure_logging()
settings = BridgeSettings.from_env()
logger.info(f"Realtime model: {settings.realtime_model}")
```
"""

# Config module initialization
