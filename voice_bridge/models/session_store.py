"""
Session registry for the voice session bridge.

This module provides the SessionStore class which tracks live sessions by session
id and by subject id. It is the only structure shared between sessions and the
only one that needs synchronisation: creation for a subject runs under that
subject's own lock, so unrelated subjects never wait on each other.
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

from voice_bridge.config.constants import LOGGER_NAME
from voice_bridge.errors import AlreadyActive, BridgeAtCapacity
from voice_bridge.models.session import Session, utcnow

logger = logging.getLogger(LOGGER_NAME)

# Runs a session's full termination path; must be idempotent
Terminator = Callable[[Session], Awaitable[None]]


class SessionStore:
    """
    Registry of live sessions with atomic create-with-eviction.

    The backing maps are private; callers go through create, get, remove and
    force_evict_all.
    """

    def __init__(
        self,
        terminator: Optional[Terminator] = None,
        max_sessions: Optional[int] = None,
        max_lifetime_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._sessions: Dict[str, Session] = {}
        self._by_subject: Dict[str, List[str]] = {}
        self._subject_locks: Dict[str, asyncio.Lock] = {}
        self._terminator = terminator
        self.max_sessions = max_sessions
        self.max_lifetime_seconds = max_lifetime_seconds
        self._clock = clock

    async def create(
        self,
        subject_id: str,
        call_ref: str,
        custom_instructions: Optional[str] = None,
        subject_name: Optional[str] = None,
    ) -> Session:
        """
        Register a new session for a subject.

        Fails immediately with AlreadyActive if another create for the same
        subject is in progress or if the subject already has a live session.
        Stale sessions for the subject are torn down before the new one is
        registered.

        Raises:
            AlreadyActive: The subject already has a live session
            BridgeAtCapacity: The maximum number of sessions is registered
        """
        lock = self._subject_locks.setdefault(subject_id, asyncio.Lock())
        if lock.locked():
            logger.warning(f"Rejecting concurrent session create for subject: {subject_id}")
            raise AlreadyActive(subject_id)

        try:
            async with lock:
                existing = self.sessions_for_subject(subject_id)
                live = [s for s in existing if not self.is_stale(s)]
                if live:
                    logger.warning(
                        f"Subject {subject_id} already has active session: {live[0].id}"
                    )
                    raise AlreadyActive(subject_id)

                for stale in existing:
                    logger.info(f"Evicting stale session {stale.id} for subject: {subject_id}")
                    await self._evict(stale)

                if self.max_sessions is not None and len(self._sessions) >= self.max_sessions:
                    raise BridgeAtCapacity(self.max_sessions)

                session = Session(
                    subject_id=subject_id,
                    call_ref=call_ref,
                    custom_instructions=custom_instructions,
                    subject_name=subject_name,
                    created_at=self._clock(),
                )
                self._sessions[session.id] = session
                self._by_subject.setdefault(subject_id, []).append(session.id)
                logger.info(f"Registered session {session.id} for subject: {subject_id}")
                return session
        finally:
            # A subject left with no sessions keeps no lock
            if subject_id not in self._by_subject and self._subject_locks.get(subject_id) is lock:
                del self._subject_locks[subject_id]

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> None:
        """Remove a session from the registry. Removing an unknown id is a no-op."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        ids = self._by_subject.get(session.subject_id, [])
        if session_id in ids:
            ids.remove(session_id)
        if not ids:
            self._by_subject.pop(session.subject_id, None)
            lock = self._subject_locks.get(session.subject_id)
            if lock is not None and not lock.locked():
                del self._subject_locks[session.subject_id]
        logger.info(f"Session removed: {session_id}")

    async def force_evict_all(self, subject_id: str) -> int:
        """
        Tear down every session registered for a subject.

        Returns:
            The number of sessions evicted
        """
        sessions = self.sessions_for_subject(subject_id)
        for session in sessions:
            await self._evict(session)
        if sessions:
            logger.info(f"Force-evicted {len(sessions)} session(s) for subject: {subject_id}")
        return len(sessions)

    def sessions_for_subject(self, subject_id: str) -> List[Session]:
        return [
            self._sessions[sid]
            for sid in self._by_subject.get(subject_id, [])
            if sid in self._sessions
        ]

    def all_sessions(self) -> List[Session]:
        return list(self._sessions.values())

    def is_stale(self, session: Session) -> bool:
        """A session is stale once it is terminating or has outlived the maximum lifetime."""
        if session.is_terminating:
            return True
        if self.max_lifetime_seconds is None:
            return False
        age = (self._clock() - session.created_at).total_seconds()
        return age > self.max_lifetime_seconds

    def __len__(self) -> int:
        return len(self._sessions)

    async def _evict(self, session: Session) -> None:
        if self._terminator is not None:
            try:
                await self._terminator(session)
            except Exception as e:
                logger.error(f"Error terminating evicted session {session.id}: {e}", exc_info=True)
        self.remove(session.id)
