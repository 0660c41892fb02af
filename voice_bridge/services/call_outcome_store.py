"""
Call outcome persistence.

The bridge hands exactly one CallOutcome per session to a CallOutcomeStore when
the session ends. Retrying a failed save is the store's business, not the
bridge's. TranscriptFileStore is the default store and writes a readable
transcript file per call.
"""

import asyncio
import logging
from pathlib import Path
from typing import Protocol

from voice_bridge.config.constants import LOGGER_NAME
from voice_bridge.models.session import CallOutcome
from voice_bridge.models.transcript import SPEAKER_LABELS

logger = logging.getLogger(LOGGER_NAME)

SEPARATOR = "-" * 57


class CallOutcomeStore(Protocol):
    async def save_call_outcome(self, call_ref: str, outcome: CallOutcome) -> None:
        ...


def render_transcript(call_ref: str, outcome: CallOutcome) -> str:
    """Render an outcome as the plain-text conversation record."""
    lines = [
        "CONVERSATION TRANSCRIPT",
        "=" * 37,
        f"Session ID: {outcome.session_id}",
        f"Subject: {outcome.subject_name} (ID: {outcome.subject_id})",
        f"Call Ref: {call_ref}",
        f"Status: {outcome.status.value} ({outcome.reason})",
        f"Duration: {outcome.duration_seconds} seconds",
        f"Assessment: {outcome.success_rating.value} (quality {outcome.quality_score}/10)",
        f"Information Gathered: {'yes' if outcome.information_gathered else 'no'}",
        f"Date: {outcome.started_at.isoformat()}",
        f"Total Exchanges: {len(outcome.conversation_log)}",
        "",
        SEPARATOR,
        "",
    ]
    for turn in outcome.conversation_log:
        label = SPEAKER_LABELS[turn.speaker].upper()
        lines.append(f"[{turn.timestamp.strftime('%H:%M:%S')}] {label}: {turn.text}")
        lines.append("")
    lines.append(SEPARATOR)
    lines.append("End of Conversation")
    return "\n".join(lines) + "\n"


class TranscriptFileStore:
    """Writes each call outcome to <directory>/conversation_<session>_<call_ref>.txt."""

    def __init__(self, directory: str = "conversation_logs"):
        self.directory = Path(directory)

    def path_for(self, call_ref: str, outcome: CallOutcome) -> Path:
        safe_ref = "".join(c if c.isalnum() or c in "-_" else "_" for c in call_ref)
        return self.directory / f"conversation_{outcome.session_id}_{safe_ref}.txt"

    async def save_call_outcome(self, call_ref: str, outcome: CallOutcome) -> None:
        path = self.path_for(call_ref, outcome)
        content = render_transcript(call_ref, outcome)
        await asyncio.to_thread(self._write, path, content)
        logger.info(
            f"Conversation saved to file: {path.name} "
            f"({outcome.duration_seconds}s, {len(outcome.conversation_log)} turns)"
        )

    def _write(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
