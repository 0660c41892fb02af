"""
Models module for data structures and state management in the voice session bridge.

Key components:
- message_schemas: Pydantic models for the telephony media-stream protocol
  (connected, start, media, stop and the outbound media envelope).
- openai_schemas: Pydantic models for the OpenAI Realtime API messages the
  bridge sends.
- events: Normalised events both links hand to the session controller.
- session: The Session object, its states and the call outcome it produces.
- session_store: Registry of live sessions with atomic create-with-eviction.
- transcript: Coalescing of transcript fragments into conversation turns.
- assessment: Duration and response-length rating attached to every call outcome.

Usage examples:
```python
from voice_bridge.models.session_store import SessionStore

store = SessionStore(max_sessions=50)
session = await store.create("patient-1", "CA123", subject_name="Jane")
```
"""

from voice_bridge.models.assessment import CallAssessment, assess_call
from voice_bridge.models.events import AIEvent, AIEventKind, TelephonyEvent, TelephonyEventKind
from voice_bridge.models.session import (
    AudioFrame,
    CallOutcome,
    CallOutcomeStatus,
    ConversationTurn,
    Session,
    SessionState,
    SessionStatus,
    Speaker,
    SuccessRating,
)
from voice_bridge.models.session_store import SessionStore
from voice_bridge.models.transcript import TranscriptAssembler
