"""
Handlers module for the HTTP surface of the voice session bridge.

Key components:
- session_handlers: REST endpoints to start, inspect, end and evict sessions,
  used by the call-initiation and monitoring collaborators.
- twiml_handlers: Call-setup markup that tells Twilio to connect the call's
  media stream to this bridge.
"""

# Handlers module initialization
