"""
Error taxonomy for the voice session bridge.

Only AlreadyActive, BridgeAtCapacity and SessionNotFound reach callers of the
BridgeService. The link and persistence errors are raised inside a session and
converted into its termination path.
"""

from typing import Optional


class BridgeError(Exception):
    """Base class for all bridge errors."""


class AlreadyActive(BridgeError):
    """The subject already has a live session; the caller must not retry immediately."""

    def __init__(self, subject_id: str):
        self.subject_id = subject_id
        super().__init__(f"Subject {subject_id} already has an active session")


class BridgeAtCapacity(BridgeError):
    """The maximum number of live sessions has been reached."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Maximum number of active sessions reached ({limit})")


class SessionNotFound(BridgeError):
    """No session is registered under the given id."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class LinkHandshakeFailed(BridgeError):
    """The speech-AI provider rejected or never acknowledged the session configuration."""


class LinkClosedUnexpectedly(BridgeError):
    """A link socket dropped outside a graceful stop or end request."""

    def __init__(self, link: str, code: Optional[int] = None):
        self.link = link
        self.code = code
        super().__init__(f"{link} link closed unexpectedly (code: {code})")


class PersistenceFailed(BridgeError):
    """Saving the call outcome failed. Logged, never retried by the bridge."""
