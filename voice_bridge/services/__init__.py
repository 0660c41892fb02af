"""
Services module for the external collaborators of the voice session bridge.

Key components:
- telephony_link: Adapter over the Twilio Media Streams WebSocket of one call,
  normalising its events and stamping outbound audio with pacing metadata.
- call_outcome_store: The persistence contract invoked once per ended session,
  and a default implementation that writes a transcript file per call.
"""

# Services module initialization
