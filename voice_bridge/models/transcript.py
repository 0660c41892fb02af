"""
Transcript assembly for a single session.

Turns the stream of partial agent text and completed caller transcriptions into
an ordered, timestamped conversation log plus a flat transcript string. Only the
session's own worker calls into the assembler, so it carries no locking.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from voice_bridge.config.constants import LOGGER_NAME
from voice_bridge.models.session import ConversationTurn, Speaker, utcnow

logger = logging.getLogger(LOGGER_NAME)

SPEAKER_LABELS = {
    Speaker.AGENT: "AI",
    Speaker.SUBJECT: "Patient",
}


class TranscriptAssembler:
    """
    Builds the conversation log for one session.

    Consecutive fragments from the same speaker that arrive within
    coalesce_window of the previous fragment extend the last turn instead of
    opening a new one.
    """

    def __init__(
        self,
        conversation_log: Optional[List[ConversationTurn]] = None,
        coalesce_window: float = 3.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.conversation_log = conversation_log if conversation_log is not None else []
        self.coalesce_window = timedelta(seconds=coalesce_window)
        self._clock = clock
        self._lines: List[str] = []
        self._agent_buffer = ""
        self._last_fragment_at: Optional[datetime] = None

    def on_agent_text_delta(self, text: str) -> None:
        if not text:
            return
        self._append(Speaker.AGENT, text, separator="")
        self._agent_buffer += text

    def on_agent_turn_done(self) -> None:
        """Close the agent's current response and emit it as one flat line."""
        text = self._agent_buffer.strip()
        self._agent_buffer = ""
        # The next response opens a new turn even inside the coalesce window
        if self.conversation_log and self.conversation_log[-1].speaker is Speaker.AGENT:
            self._last_fragment_at = None
        if text:
            self._lines.append(f"{SPEAKER_LABELS[Speaker.AGENT]}: {text}")

    def on_subject_transcript(self, text: str) -> None:
        text = (text or "").strip()
        if not text:
            return
        self._append(Speaker.SUBJECT, text, separator=" ")
        self._lines.append(f"{SPEAKER_LABELS[Speaker.SUBJECT]}: {text}")
        logger.debug(f"Subject said: {text}")

    def flat_transcript(self) -> str:
        """Return the transcript as newline-separated speaker lines, including any unfinished agent text."""
        lines = list(self._lines)
        pending = self._agent_buffer.strip()
        if pending:
            lines.append(f"{SPEAKER_LABELS[Speaker.AGENT]}: {pending}")
        return "\n".join(lines)

    def _append(self, speaker: Speaker, text: str, separator: str) -> None:
        now = self._clock()
        last = self.conversation_log[-1] if self.conversation_log else None

        if (
            last is not None
            and last.speaker is speaker
            and self._last_fragment_at is not None
            and now - self._last_fragment_at <= self.coalesce_window
        ):
            last.text = f"{last.text}{separator}{text}" if last.text else text
        else:
            # Keep turns strictly ordered even if the clock stalls
            if last is not None and now <= last.timestamp:
                now = last.timestamp + timedelta(microseconds=1)
            self.conversation_log.append(
                ConversationTurn(speaker=speaker, text=text, timestamp=now)
            )
        self._last_fragment_at = now
