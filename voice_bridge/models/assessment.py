"""
Post-call assessment.

A deterministic rating computed from the call duration and how much the patient
said. Every CallOutcome carries one.
"""

from typing import Iterable

from pydantic import BaseModel, Field

from voice_bridge.models.session import ConversationTurn, Speaker, SuccessRating

SUCCESS_MIN_DURATION_SECONDS = 30
SUBSTANTIAL_RESPONSE_CHARS = 50

# (minimum duration in seconds, quality score), highest threshold first
QUALITY_BY_DURATION = (
    (120, 8),
    (60, 6),
    (30, 4),
)
MIN_QUALITY_SCORE = 2


class CallAssessment(BaseModel):
    success_rating: SuccessRating
    quality_score: int = Field(ge=1, le=10)
    information_gathered: bool
    patient_response_length: int = 0


def quality_score_for_duration(duration_seconds: int) -> int:
    for threshold, score in QUALITY_BY_DURATION:
        if duration_seconds >= threshold:
            return score
    return MIN_QUALITY_SCORE


def assess_call(duration_seconds: int, conversation_log: Iterable[ConversationTurn]) -> CallAssessment:
    """
    Rate a finished call.

    A call is successful when it lasted at least 30 seconds and the patient
    said more than 50 characters in total, partially successful when only one
    of the two holds, and unsuccessful otherwise.
    """
    patient_text = " ".join(
        turn.text for turn in conversation_log if turn.speaker is Speaker.SUBJECT
    ).strip()
    substantial = len(patient_text) > SUBSTANTIAL_RESPONSE_CHARS
    long_enough = duration_seconds >= SUCCESS_MIN_DURATION_SECONDS

    if long_enough and substantial:
        rating = SuccessRating.SUCCESSFUL
    elif long_enough or substantial:
        rating = SuccessRating.PARTIALLY_SUCCESSFUL
    else:
        rating = SuccessRating.UNSUCCESSFUL

    return CallAssessment(
        success_rating=rating,
        quality_score=quality_score_for_duration(duration_seconds),
        information_gathered=substantial,
        patient_response_length=len(patient_text),
    )
