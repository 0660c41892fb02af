"""
Lifecycle and relay logic for one bridged call.

A SessionController owns exactly one Session. Both links push their normalised
events into a single inbox that one worker task drains, so the session is only
ever mutated from that worker; cross-session work never shares state.

State machine:
    CREATED -> AWAITING_TELEPHONY_LINK      on construction
    AWAITING_TELEPHONY_LINK -> AWAITING_AI_HANDSHAKE   telephony start event
    AWAITING_AI_HANDSHAKE -> ACTIVE         provider acknowledged session.update
    any -> ENDING                           stop, link loss, fatal error, end request, timeout
    ENDING -> ENDED                         links closed and persistence attempted
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple, Union

from voice_bridge.bot.audio_codec import AudioCodec
from voice_bridge.config.constants import CLOSE_CODE_NORMAL, LOGGER_NAME
from voice_bridge.config.settings import BridgeSettings
from voice_bridge.errors import LinkClosedUnexpectedly, LinkHandshakeFailed, PersistenceFailed
from voice_bridge.models.assessment import assess_call
from voice_bridge.models.events import AIEvent, AIEventKind, TelephonyEvent, TelephonyEventKind
from voice_bridge.models.session import (
    AudioFrame,
    CallOutcome,
    CallOutcomeStatus,
    FrameDirection,
    Session,
    SessionState,
    SessionStatus,
    utcnow,
)
from voice_bridge.models.transcript import TranscriptAssembler
from voice_bridge.services.call_outcome_store import CallOutcomeStore

logger = logging.getLogger(LOGGER_NAME)


class EventSource(str, Enum):
    TELEPHONY = "telephony"
    AI = "ai"


Event = Union[TelephonyEvent, AIEvent]
Envelope = Tuple[EventSource, Event]
AILinkFactory = Callable[[Session], object]
Handler = Callable[[Event], Awaitable[None]]


class SessionController:
    """
    Orchestrates one session: link wiring, audio relay, transcript capture and teardown.

    Args:
        session: The session this controller owns
        settings: Bridge settings (frame size, timeouts, limits)
        ai_link_factory: Builds the provider link for the session when the call starts
        outcome_store: Persistence collaborator called once when the session ends
        codec: Audio translation between telephony and provider formats
        on_ended: Called with the session after it reached ENDED
    """

    def __init__(
        self,
        session: Session,
        settings: BridgeSettings,
        ai_link_factory: AILinkFactory,
        outcome_store: CallOutcomeStore,
        codec: Optional[AudioCodec] = None,
        on_ended: Optional[Callable[[Session], None]] = None,
        clock=utcnow,
    ):
        self.session = session
        self.settings = settings
        self.codec = codec or AudioCodec(
            settings.telephony_audio_format, settings.provider_audio_format
        )
        self.transcript = TranscriptAssembler(
            session.conversation_log,
            coalesce_window=settings.transcript_coalesce_seconds,
            clock=clock,
        )
        self._ai_link_factory = ai_link_factory
        self._outcome_store = outcome_store
        self._on_ended = on_ended
        self._clock = clock

        self._inbox: "asyncio.Queue[Envelope]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._watchdog: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._teardown_task: Optional[asyncio.Task] = None
        self._ended = asyncio.Event()
        self._pending_overflow = 0
        self.outbound_sequence = 0
        self.end_status: Optional[CallOutcomeStatus] = None
        self.end_reason: Optional[str] = None

        self._handlers: Dict[EventSource, Dict[Enum, Handler]] = {
            EventSource.TELEPHONY: {
                TelephonyEventKind.CONNECTED: self._on_telephony_connected,
                TelephonyEventKind.START: self._on_telephony_start,
                TelephonyEventKind.MEDIA: self._on_telephony_media,
                TelephonyEventKind.STOP: self._on_telephony_stop,
                TelephonyEventKind.CLOSED: self._on_telephony_closed,
                TelephonyEventKind.ERROR: self._on_link_error,
            },
            EventSource.AI: {
                AIEventKind.READY: self._on_ai_ready,
                AIEventKind.TEXT_DELTA: self._on_agent_text_delta,
                AIEventKind.AUDIO_DELTA: self._on_agent_audio_delta,
                AIEventKind.AUDIO_DONE: self._on_agent_audio_done,
                AIEventKind.TURN_DONE: self._on_agent_turn_done,
                AIEventKind.SUBJECT_TRANSCRIPT: self._on_subject_transcript,
                AIEventKind.ERROR: self._on_link_error,
                AIEventKind.CLOSED: self._on_ai_closed,
            },
        }

        session.state = SessionState.AWAITING_TELEPHONY_LINK

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def is_ended(self) -> bool:
        return self._ended.is_set()

    def start(self) -> None:
        """Arm the connect and lifetime deadlines. Must be called from a running loop."""
        if self._watchdog is None:
            self._watchdog = asyncio.create_task(self._watch_deadlines())

    def status(self) -> SessionStatus:
        return self.session.status(self._clock())

    async def wait_ended(self) -> None:
        await self._ended.wait()

    async def attach_telephony_link(self, link) -> bool:
        """
        Wire the telephony link and start the session's worker.

        Returns:
            bool: False if the session is terminating or already has a link;
            closing the rejected link is up to the caller
        """
        if self.session.is_terminating or self.session.telephony_link is not None:
            logger.warning(f"Rejecting telephony link for session {self.session.id} in state {self.state.value}")
            return False

        self.session.telephony_link = link
        self._worker = asyncio.create_task(self._run(), name=f"session-{self.session.id}")
        self._spawn(self._pump(EventSource.TELEPHONY, link.receive_event))
        logger.info(f"Telephony link attached to session {self.session.id}")
        return True

    async def end(
        self,
        status: CallOutcomeStatus = CallOutcomeStatus.COMPLETED,
        reason: str = "end requested",
    ) -> None:
        """
        Tear the session down and wait until it reached ENDED.

        Safe to call any number of times; only the first call decides the
        outcome and persistence runs once.
        """
        if self.is_ended:
            return
        await asyncio.shield(self._begin_end(status, reason))

    # Worker

    async def _run(self) -> None:
        while not self.session.is_terminating:
            source, event = await self._inbox.get()
            handler = self._handlers[source].get(event.kind)
            if handler is None:
                continue
            try:
                await handler(event)
            except Exception as e:
                logger.error(f"Unrecoverable error in session {self.session.id}: {e}", exc_info=True)
                self._begin_end(CallOutcomeStatus.FAILED, f"relay error: {e}")

    async def _pump(self, source: EventSource, receive: Callable[[], Awaitable[Event]]) -> None:
        while True:
            try:
                event = await receive()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"{source.value} link raised while receiving: {e}")
                event = (
                    TelephonyEvent(kind=TelephonyEventKind.ERROR, detail=str(e), fatal=True)
                    if source is EventSource.TELEPHONY
                    else AIEvent(kind=AIEventKind.ERROR, detail=str(e), fatal=True)
                )
            await self._inbox.put((source, event))
            if event.is_terminal:
                return

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # Telephony events

    async def _on_telephony_connected(self, event: TelephonyEvent) -> None:
        logger.info(f"Telephony provider connected for session {self.session.id}")

    async def _on_telephony_start(self, event: TelephonyEvent) -> None:
        if self.state is not SessionState.AWAITING_TELEPHONY_LINK:
            logger.warning(f"Ignoring repeated start event for session {self.session.id}")
            return

        self.session.stream_sid = event.stream_sid
        self.session.state = SessionState.AWAITING_AI_HANDSHAKE
        logger.info(f"Session {self.session.id} streaming on {event.stream_sid}, awaiting AI handshake")

        try:
            ai_link = self._ai_link_factory(self.session)
        except Exception as e:
            logger.error(f"Could not create AI link for session {self.session.id}: {e}")
            self._begin_end(CallOutcomeStatus.FAILED, f"AI link unavailable: {e}")
            return
        self.session.ai_link = ai_link
        self._spawn(self._connect_ai_link(ai_link))

    async def _on_telephony_media(self, event: TelephonyEvent) -> None:
        frame = AudioFrame(
            sequence=event.sequence or 0,
            direction=FrameDirection.INBOUND,
            payload=event.payload or b"",
        )
        if self.state is SessionState.ACTIVE:
            await self._forward_inbound(frame)
            return

        pending = self.session.pending_audio_frames
        if len(pending) >= self.settings.max_pending_frames:
            pending.popleft()
            self._pending_overflow += 1
            if self._pending_overflow == 1:
                logger.warning(f"Pending audio buffer full for session {self.session.id}, dropping oldest frames")
        pending.append(frame)

    async def _on_telephony_stop(self, event: TelephonyEvent) -> None:
        self._begin_end(CallOutcomeStatus.COMPLETED, "telephony stream stopped")

    async def _on_telephony_closed(self, event: TelephonyEvent) -> None:
        error = LinkClosedUnexpectedly("telephony", event.code)
        logger.warning(f"Session {self.session.id}: {error}")
        self._begin_end(CallOutcomeStatus.FAILED, str(error))

    # AI events

    async def _connect_ai_link(self, ai_link) -> None:
        try:
            connected = await ai_link.connect()
        except LinkHandshakeFailed as e:
            logger.error(f"AI handshake failed for session {self.session.id}: {e}")
            await self._inbox.put(
                (EventSource.AI, AIEvent(kind=AIEventKind.ERROR, detail=f"handshake failed: {e}", fatal=True))
            )
            return
        if not connected:
            logger.warning(f"AI link for session {self.session.id} already connecting")
            return
        await self._inbox.put((EventSource.AI, AIEvent(kind=AIEventKind.READY)))
        self._spawn(self._pump(EventSource.AI, ai_link.receive_event))

    async def _on_ai_ready(self, event: AIEvent) -> None:
        if self.state is not SessionState.AWAITING_AI_HANDSHAKE:
            return
        pending = self.session.pending_audio_frames
        if pending:
            logger.info(f"Flushing {len(pending)} buffered audio frames for session {self.session.id}")
        while pending:
            await self._forward_inbound(pending.popleft())
        self.session.state = SessionState.ACTIVE
        logger.info(f"Session {self.session.id} active")

    async def _on_agent_text_delta(self, event: AIEvent) -> None:
        self.transcript.on_agent_text_delta(event.text or "")

    async def _on_agent_audio_delta(self, event: AIEvent) -> None:
        link = self.session.telephony_link
        if link is None or not event.audio:
            return
        encoded = self.codec.encode_for_telephony(event.audio)
        for payload in self.codec.chunk(encoded, self.settings.outbound_frame_bytes):
            frame = AudioFrame(
                sequence=self.outbound_sequence,
                direction=FrameDirection.OUTBOUND,
                payload=payload,
            )
            self.outbound_sequence += 1
            if not await link.send_audio(frame.payload):
                logger.debug(f"Outbound frame {frame.sequence} dropped for session {self.session.id}")

    async def _on_agent_audio_done(self, event: AIEvent) -> None:
        logger.debug(f"Agent audio response completed for session {self.session.id}")

    async def _on_agent_turn_done(self, event: AIEvent) -> None:
        self.transcript.on_agent_turn_done()

    async def _on_subject_transcript(self, event: AIEvent) -> None:
        self.transcript.on_subject_transcript(event.text or "")

    async def _on_ai_closed(self, event: AIEvent) -> None:
        if event.code == CLOSE_CODE_NORMAL:
            self._begin_end(CallOutcomeStatus.COMPLETED, "AI link closed by provider")
            return
        error = LinkClosedUnexpectedly("AI", event.code)
        logger.warning(f"Session {self.session.id}: {error}")
        self._begin_end(CallOutcomeStatus.FAILED, str(error))

    async def _on_link_error(self, event: Event) -> None:
        if event.fatal:
            self._begin_end(CallOutcomeStatus.FAILED, event.detail or "link error")
        else:
            logger.warning(f"Non-fatal link error in session {self.session.id}: {event.detail}")

    async def _forward_inbound(self, frame: AudioFrame) -> None:
        ai_link = self.session.ai_link
        if ai_link is None:
            return
        audio = self.codec.decode_telephony_frame(frame.payload)
        if not await ai_link.append_audio(audio):
            logger.debug(f"Inbound frame {frame.sequence} not delivered for session {self.session.id}")

    # Deadlines

    async def _watch_deadlines(self) -> None:
        connect_timeout = self.settings.telephony_connect_timeout_seconds
        lifetime = self.settings.max_session_lifetime_seconds

        await asyncio.sleep(min(connect_timeout, lifetime))
        if self.state is SessionState.AWAITING_TELEPHONY_LINK:
            self._begin_end(CallOutcomeStatus.TIMEOUT, "telephony link never connected")
            return

        if lifetime > connect_timeout:
            await asyncio.sleep(lifetime - connect_timeout)
        if not self.session.is_terminating:
            self._begin_end(CallOutcomeStatus.TIMEOUT, "maximum session lifetime exceeded")

    # Teardown

    def _begin_end(self, status: CallOutcomeStatus, reason: str) -> asyncio.Task:
        if self._teardown_task is None:
            self.end_status = status
            self.end_reason = reason
            self.session.state = SessionState.ENDING
            logger.info(f"Session {self.session.id} ending ({status.value}): {reason}")
            self._teardown_task = asyncio.create_task(self._teardown())
        return self._teardown_task

    async def _teardown(self) -> None:
        timeout = self.settings.link_close_timeout_seconds
        tasks = [
            t for t in (self._worker, self._watchdog, *self._tasks)
            if t is not None and not t.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks, timeout=timeout)

        await asyncio.gather(
            self._close_link("telephony", self.session.telephony_link),
            self._close_link("AI", self.session.ai_link),
        )

        self.session.ended_at = self._clock()
        await self._persist()

        self.session.state = SessionState.ENDED
        self._ended.set()
        logger.info(f"Session {self.session.id} ended after {self.session.duration_seconds()}s")
        if self._on_ended is not None:
            try:
                self._on_ended(self.session)
            except Exception as e:
                logger.error(f"Error in session ended callback: {e}", exc_info=True)

    async def _close_link(self, name: str, link) -> None:
        if link is None:
            return
        try:
            await asyncio.wait_for(link.close(), timeout=self.settings.link_close_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"{name} link for session {self.session.id} did not close in time - dropped")
        except Exception as e:
            logger.error(f"Error closing {name} link for session {self.session.id}: {e}")

    def build_outcome(self) -> CallOutcome:
        session = self.session
        duration = session.duration_seconds(self._clock())
        assessment = assess_call(duration, session.conversation_log)
        logger.info(
            f"Call assessment for session {session.id}: {assessment.success_rating.value}, "
            f"quality {assessment.quality_score}, duration {duration}s"
        )
        return CallOutcome(
            session_id=session.id,
            subject_id=session.subject_id,
            subject_name=session.subject_name,
            transcript=self.transcript.flat_transcript(),
            duration_seconds=duration,
            status=self.end_status or CallOutcomeStatus.COMPLETED,
            reason=self.end_reason or "",
            conversation_log=list(session.conversation_log),
            started_at=session.created_at,
            ended_at=session.ended_at or self._clock(),
            success_rating=assessment.success_rating,
            quality_score=assessment.quality_score,
            information_gathered=assessment.information_gathered,
        )

    async def _persist(self) -> None:
        outcome = self.build_outcome()
        try:
            await asyncio.wait_for(
                self._outcome_store.save_call_outcome(self.session.call_ref, outcome),
                timeout=self.settings.persistence_timeout_seconds,
            )
        except Exception as e:
            error = PersistenceFailed(f"Could not save outcome for call {self.session.call_ref}: {e!r}")
            logger.error(str(error))
