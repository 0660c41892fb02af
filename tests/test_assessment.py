from datetime import datetime, timezone

import pytest

from voice_bridge.models.assessment import assess_call, quality_score_for_duration
from voice_bridge.models.session import ConversationTurn, Speaker, SuccessRating

STARTED = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
LONG_ANSWER = "I have been taking the new tablets every morning with breakfast."


def turn(speaker, text):
    return ConversationTurn(speaker=speaker, text=text, timestamp=STARTED)


@pytest.mark.parametrize(
    "duration, expected",
    [(0, 2), (29, 2), (30, 4), (59, 4), (60, 6), (119, 6), (120, 8), (3600, 8)],
)
def test_quality_score_follows_duration(duration, expected):
    assert quality_score_for_duration(duration) == expected


def test_long_call_with_substantial_answers_is_successful():
    log = [turn(Speaker.AGENT, "How have you been?"), turn(Speaker.SUBJECT, LONG_ANSWER)]

    assessment = assess_call(45, log)

    assert assessment.success_rating is SuccessRating.SUCCESSFUL
    assert assessment.quality_score == 4
    assert assessment.information_gathered is True
    assert assessment.patient_response_length == len(LONG_ANSWER)


def test_long_call_without_patient_speech_is_partial():
    log = [turn(Speaker.AGENT, LONG_ANSWER * 3)]

    assessment = assess_call(90, log)

    assert assessment.success_rating is SuccessRating.PARTIALLY_SUCCESSFUL
    assert assessment.information_gathered is False


def test_short_call_with_substantial_answers_is_partial():
    assessment = assess_call(12, [turn(Speaker.SUBJECT, LONG_ANSWER)])

    assert assessment.success_rating is SuccessRating.PARTIALLY_SUCCESSFUL
    assert assessment.quality_score == 2


def test_patient_turns_are_combined():
    """Test several short answers together can count as substantial."""
    log = [turn(Speaker.SUBJECT, "Yes, I took them."), turn(Speaker.SUBJECT, "No dizziness at all since Monday.")]

    assert assess_call(10, log).information_gathered is True


def test_empty_short_call_is_unsuccessful():
    assessment = assess_call(5, [])

    assert assessment.success_rating is SuccessRating.UNSUCCESSFUL
    assert assessment.quality_score == 2
    assert assessment.information_gathered is False
    assert assessment.patient_response_length == 0
