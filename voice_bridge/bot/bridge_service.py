"""
Bridge module connecting telephony media streams with the OpenAI Realtime API.

BridgeService is the entry point collaborators use: it starts sessions for
subjects, attaches the telephony socket once the provider dials back, ends
sessions and reports their status. Each session is driven by its own
SessionController; the service only keeps the SessionStore and the mapping
from session id to controller.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from voice_bridge.bot.audio_codec import AudioCodec
from voice_bridge.bot.realtime_api import build_realtime_link
from voice_bridge.bot.session_controller import AILinkFactory, SessionController
from voice_bridge.config.constants import LOGGER_NAME
from voice_bridge.config.settings import BridgeSettings
from voice_bridge.errors import SessionNotFound
from voice_bridge.models.session import CallOutcomeStatus, Session, SessionStatus, utcnow
from voice_bridge.models.session_store import SessionStore
from voice_bridge.services.call_outcome_store import CallOutcomeStore, TranscriptFileStore

logger = logging.getLogger(LOGGER_NAME)


class BridgeService:
    """
    Manages the lifecycle of bridged calls.

    This class handles:
    - Creating sessions with the at-most-one-per-subject guarantee
    - Wiring the telephony link into the session's controller
    - Ending sessions gracefully and evicting stale ones
    - Reporting session status for monitoring
    """

    def __init__(
        self,
        settings: Optional[BridgeSettings] = None,
        outcome_store: Optional[CallOutcomeStore] = None,
        ai_link_factory: Optional[AILinkFactory] = None,
        clock: Callable = utcnow,
    ):
        self.settings = settings or BridgeSettings()
        self.outcome_store = outcome_store or TranscriptFileStore(self.settings.transcript_dir)
        self.ai_link_factory = ai_link_factory or self._build_ai_link
        self.codec = AudioCodec(
            self.settings.telephony_audio_format, self.settings.provider_audio_format
        )
        self.store = SessionStore(
            terminator=self._evict_session,
            max_sessions=self.settings.max_active_sessions,
            max_lifetime_seconds=self.settings.max_session_lifetime_seconds,
            clock=clock,
        )
        self.controllers: Dict[str, SessionController] = {}
        self._clock = clock

    @classmethod
    def from_env(cls) -> "BridgeService":
        return cls(BridgeSettings.from_env())

    def _build_ai_link(self, session: Session):
        return build_realtime_link(session, self.settings)

    @property
    def active_count(self) -> int:
        return len(self.list_active_sessions())

    async def start_session(
        self,
        subject_id: str,
        call_ref: str,
        custom_instructions: Optional[str] = None,
        subject_name: Optional[str] = None,
    ) -> str:
        """
        Start a session for a subject and return its id.

        Raises:
            AlreadyActive: The subject already has a live session
            BridgeAtCapacity: The maximum number of sessions is running
        """
        session = await self.store.create(
            subject_id,
            call_ref,
            custom_instructions=custom_instructions,
            subject_name=subject_name,
        )
        controller = SessionController(
            session,
            self.settings,
            self.ai_link_factory,
            self.outcome_store,
            codec=self.codec,
            on_ended=self._on_session_ended,
            clock=self._clock,
        )
        self.controllers[session.id] = controller
        controller.start()
        logger.info(f"Started session {session.id} for subject {subject_id} (call: {call_ref})")
        return session.id

    async def attach_telephony_link(self, session_id: str, link) -> SessionController:
        """
        Hand the telephony media-stream link to the session's controller.

        Raises:
            SessionNotFound: No live session has this id
        """
        controller = self._controller(session_id)
        if not await controller.attach_telephony_link(link):
            raise SessionNotFound(session_id)
        return controller

    async def end_session(self, session_id: str) -> None:
        """
        End a session gracefully. Ending a session that is already ending or
        gone is a no-op.
        """
        controller = self.controllers.get(session_id)
        if controller is None:
            logger.debug(f"End requested for unknown or finished session: {session_id}")
            return
        await controller.end(CallOutcomeStatus.COMPLETED, "end requested")

    def list_active_sessions(self) -> List[SessionStatus]:
        """
        Return a status snapshot of every session that is not yet terminating.

        Callers get SessionStatus copies, not the Session objects; use
        get_session for the live object.
        """
        now = self._clock()
        return [s.status(now) for s in self.store.all_sessions() if not s.is_terminating]

    def get_session_status(self, session_id: str) -> SessionStatus:
        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session.status(self._clock())

    def get_session(self, session_id: str) -> Optional[Session]:
        return self.store.get(session_id)

    async def force_evict_all(self, subject_id: str) -> int:
        return await self.store.force_evict_all(subject_id)

    def stream_url(self, session_id: str) -> str:
        return self.settings.stream_url(session_id)

    async def wait_until_ended(self, session_id: str) -> None:
        controller = self.controllers.get(session_id)
        if controller is not None:
            await controller.wait_ended()

    async def shutdown(self) -> None:
        """End every live session, e.g. when the application stops."""
        controllers = list(self.controllers.values())
        if not controllers:
            return
        logger.info(f"Shutting down bridge: ending {len(controllers)} session(s)")
        await asyncio.gather(
            *(c.end(CallOutcomeStatus.COMPLETED, "bridge shutting down") for c in controllers),
            return_exceptions=True,
        )

    def _controller(self, session_id: str) -> SessionController:
        controller = self.controllers.get(session_id)
        if controller is None or controller.session.is_terminating:
            raise SessionNotFound(session_id)
        return controller

    async def _evict_session(self, session: Session) -> None:
        controller = self.controllers.get(session.id)
        if controller is not None:
            await controller.end(CallOutcomeStatus.EVICTED, "replaced by a new session")

    def _on_session_ended(self, session: Session) -> None:
        self.controllers.pop(session.id, None)
        self.store.remove(session.id)


# Create a singleton instance of the bridge
bridge = BridgeService.from_env()


def get_bridge() -> BridgeService:
    """FastAPI dependency returning the process-wide bridge."""
    return bridge
