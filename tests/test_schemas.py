from datetime import datetime

import pytest
from pydantic import ValidationError

from schemas import (
    ActivityAttempt,
    AttemptHistory,
    CoursePointsLedger,
    LabGrade,
    QuizGrade,
    QuizScoringMode,
)


def _sample_attempt() -> dict[str, object]:
    return {
        "attempt_id": 3,
        "activity_id": "quiz-1",
        "activity_type": "quiz",
        "user_id": "learner",
        "course_id": "bpmn",
        "attempt_number": 2,
        "raw_result": {"questions": [{"correct_option": 1}], "answers": {"0": 1}},
        "computed_score": 100,
        "points_awarded": 7,
        "created_at": "2024-05-01T10:00:00+00:00",
    }


def test_attempt_parses_stored_rows():
    attempt = ActivityAttempt.model_validate(_sample_attempt())
    assert isinstance(attempt.created_at, datetime)
    assert attempt.raw_result["answers"] == {"0": 1}
    dumped = attempt.model_dump(mode="json")
    assert dumped["activity_type"] == "quiz"


@pytest.mark.parametrize(
    "field, value",
    [("attempt_number", 0), ("points_awarded", 101), ("computed_score", -1), ("activity_type", "essay")],
)
def test_attempt_rejects_out_of_range_values(field, value):
    payload = _sample_attempt()
    payload[field] = value
    with pytest.raises(ValidationError):
        ActivityAttempt.model_validate(payload)


def test_ledger_is_frozen_and_non_negative():
    ledger = CoursePointsLedger(user_id="learner", course_id="bpmn", total_points=12)
    with pytest.raises(ValidationError):
        ledger.total_points = 20
    with pytest.raises(ValidationError):
        CoursePointsLedger(user_id="learner", course_id="bpmn", total_points=-1)


def test_grades_expose_computed_score():
    quiz = QuizGrade(mode="performance", points_awarded=46, correct_count=2, total_questions=3, score_percent=67)
    assert quiz.mode is QuizScoringMode.PERFORMANCE
    assert quiz.computed_score == 67
    assert quiz.activity_type == "quiz"

    lab = LabGrade(points_awarded=70, passed_tests=8, total_tests=10, pass_percent=80)
    assert lab.computed_score == 80


def test_attempt_history_defaults():
    history = AttemptHistory()
    assert history.attempts == []
    assert history.total_points == 0
