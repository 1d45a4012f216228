"""Activity grading and course point accumulation.

Every function here is pure: inputs are explicit, results are new objects and
nothing touches storage. Degenerate inputs (no questions, no tests, negative
counts or attempt numbers) are clamped rather than rejected so a caller can
always record *something* for an attempt.

Two quiz formulas are in use and neither replaces the other:

``attempt_reward``
    Lesson-player flow. Points come from a reward schedule indexed by the
    attempt number, so first tries earn the most.
``performance``
    Standalone quiz activity. Up to 70 points for correct answers plus a bonus
    of 30 for a perfect score or 15 for 80 % and above, capped at 100.
"""

from __future__ import annotations

import math
from typing import Any, Mapping, Optional, Sequence, Union

from engines.base import QuizScoringStrategy, clamp_points, normalise_schedule
from schemas import (
    ActivityGrade,
    CoursePointsLedger,
    DialogueGrade,
    LabGrade,
    QuizGrade,
    QuizQuestion,
    QuizScoringMode,
)

MAX_ACTIVITY_POINTS = 100

QUIZ_BASE_POINTS = 70
QUIZ_PERFECT_BONUS = 30
QUIZ_HIGH_SCORE_BONUS = 15
QUIZ_HIGH_SCORE_RATIO = 0.8

LAB_FULL_POINTS = 100
LAB_HIGH_POINTS = 70
LAB_HIGH_RATIO = 0.8
LAB_PARTIAL_POINTS = 40
LAB_PARTIAL_RATIO = 0.5

DIALOGUE_FULL_POINTS = 100
DIALOGUE_HIGH_POINTS = 70
DIALOGUE_HIGH_RATIO = 0.8
DIALOGUE_PARTIAL_POINTS = 40
DIALOGUE_PARTIAL_RATIO = 0.6

DEFAULT_REWARD_SCHEDULE = (10, 7, 5, 2)


def round_half_up(value: float) -> int:
    """Round ``.5`` upwards, matching how percentages were always displayed."""

    return int(math.floor(value + 0.5))


def _percent(part: int, whole: int) -> int:
    return round_half_up(100 * part / max(whole, 1))


def _meets(part: int, whole: int, ratio: float) -> bool:
    return whole > 0 and part * 100 >= whole * round_half_up(ratio * 100)


def _count(value: Any) -> int:
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 0


# ----------------------------------------------------------------------
# quiz strategies
# ----------------------------------------------------------------------
class AttemptRewardStrategy(QuizScoringStrategy):
    """Award the schedule entry for the attempt; later attempts reuse the last one."""

    mode = QuizScoringMode.ATTEMPT_REWARD

    def __init__(self, schedule: Sequence[int] = DEFAULT_REWARD_SCHEDULE) -> None:
        self.schedule = normalise_schedule(schedule)

    def reward_for(self, attempt_number: int) -> int:
        if not self.schedule:
            return 0
        attempt = max(int(attempt_number), 1)
        return self.schedule[min(attempt, len(self.schedule)) - 1]

    def points(self, correct_count: int, total_questions: int, attempt_number: int) -> int:
        if total_questions <= 0:
            return 0
        return self.reward_for(attempt_number)

    def describe(self) -> dict:
        return {"mode": self.mode.value, "schedule": list(self.schedule)}


class PerformanceStrategy(QuizScoringStrategy):
    """70 points spread over correct answers plus a perfect/high-score bonus."""

    mode = QuizScoringMode.PERFORMANCE

    def base_points(self, correct_count: int, total_questions: int) -> int:
        if total_questions <= 0:
            return 0
        return (QUIZ_BASE_POINTS * correct_count) // total_questions

    def bonus_points(self, correct_count: int, total_questions: int) -> int:
        if total_questions <= 0:
            return 0
        if correct_count == total_questions:
            return QUIZ_PERFECT_BONUS
        if _meets(correct_count, total_questions, QUIZ_HIGH_SCORE_RATIO):
            return QUIZ_HIGH_SCORE_BONUS
        return 0

    def points(self, correct_count: int, total_questions: int, attempt_number: int) -> int:
        total = self.base_points(correct_count, total_questions) + self.bonus_points(
            correct_count, total_questions
        )
        return min(total, MAX_ACTIVITY_POINTS)


def get_quiz_strategy(
    mode: Union[QuizScoringMode, str],
    reward_schedule: Optional[Sequence[int]] = None,
) -> QuizScoringStrategy:
    """Return the strategy object for ``mode``.

    Raises ``ValueError`` for unknown modes.
    """

    mode = QuizScoringMode(mode)
    if mode is QuizScoringMode.ATTEMPT_REWARD:
        schedule = DEFAULT_REWARD_SCHEDULE if reward_schedule is None else reward_schedule
        return AttemptRewardStrategy(schedule)
    return PerformanceStrategy()


def _selected_option(answers: Mapping[Any, Any], index: int) -> Optional[int]:
    value = answers.get(index)
    if value is None:
        value = answers.get(str(index))
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _correct_option(question: Union[QuizQuestion, Mapping[str, Any], int]) -> Optional[int]:
    if isinstance(question, QuizQuestion):
        return question.correct_option
    if isinstance(question, Mapping):
        value = question.get("correct_option", question.get("correct"))
    else:
        value = question
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def count_correct(
    questions: Sequence[Union[QuizQuestion, Mapping[str, Any], int]],
    answers: Optional[Mapping[Any, Any]],
) -> int:
    """Number of questions whose selected option matches the correct one."""

    answers = answers or {}
    correct = 0
    for index, question in enumerate(questions):
        expected = _correct_option(question)
        if expected is not None and _selected_option(answers, index) == expected:
            correct += 1
    return correct


def grade_quiz(
    questions: Sequence[Union[QuizQuestion, Mapping[str, Any], int]],
    answers: Optional[Mapping[Any, Any]],
    attempt_number: int,
    reward_schedule: Optional[Sequence[int]] = None,
    *,
    mode: Union[QuizScoringMode, str],
) -> QuizGrade:
    """Grade one quiz attempt with the formula selected by ``mode``.

    Missing answers count as incorrect; an empty quiz awards nothing.
    """

    strategy = get_quiz_strategy(mode, reward_schedule)
    total = len(questions)
    correct = count_correct(questions, answers)
    return QuizGrade(
        mode=strategy.mode,
        points_awarded=clamp_points(strategy.points(correct, total, attempt_number)),
        correct_count=correct,
        total_questions=total,
        score_percent=_percent(correct, total),
        passed=total > 0 and correct == total,
    )


# ----------------------------------------------------------------------
# labs and dialogues
# ----------------------------------------------------------------------
def grade_lab(total_tests: int, passed_tests: int) -> LabGrade:
    """Grade a lab submission from real test execution counts.

    Point bands compare the exact pass ratio. ``pass_percent`` is rounded half
    up for display only, so 795 of 1000 tests reports 80 but earns the 50 % band.
    """

    total = _count(total_tests)
    passed = min(_count(passed_tests), total)

    if total > 0 and passed == total:
        points = LAB_FULL_POINTS
    elif _meets(passed, total, LAB_HIGH_RATIO):
        points = LAB_HIGH_POINTS
    elif passed > 0 and _meets(passed, total, LAB_PARTIAL_RATIO):
        points = LAB_PARTIAL_POINTS
    else:
        points = 0

    return LabGrade(
        points_awarded=points,
        passed_tests=passed,
        total_tests=total,
        pass_percent=_percent(passed, total),
        passed=total > 0 and passed == total,
    )


def grade_dialogue(total_objectives: int, covered_objective_count: int) -> DialogueGrade:
    """Grade a dialogue by how many learning objectives the learner covered.

    As with labs, point bands use the exact coverage ratio while
    ``coverage_percent`` is the rounded display value.
    """

    total = _count(total_objectives)
    covered = min(_count(covered_objective_count), total)

    if total > 0 and covered == total:
        points = DIALOGUE_FULL_POINTS
    elif _meets(covered, total, DIALOGUE_HIGH_RATIO):
        points = DIALOGUE_HIGH_POINTS
    elif covered > 0 and _meets(covered, total, DIALOGUE_PARTIAL_RATIO):
        points = DIALOGUE_PARTIAL_POINTS
    else:
        points = 0

    return DialogueGrade(
        points_awarded=points,
        covered_objectives=covered,
        total_objectives=total,
        coverage_percent=_percent(covered, total),
        passed=total > 0 and covered == total,
    )


# ----------------------------------------------------------------------
# ledger
# ----------------------------------------------------------------------
def accumulate_points(ledger: CoursePointsLedger, points_awarded: int) -> CoursePointsLedger:
    """Return a copy of ``ledger`` with ``points_awarded`` added.

    Negative awards are ignored so the total never decreases.
    """

    return ledger.model_copy(
        update={
            "total_points": ledger.total_points + max(int(points_awarded), 0),
            "attempts_count": ledger.attempts_count + 1,
        }
    )


def regrade_raw_result(
    activity_type: str,
    raw_result: Mapping[str, Any],
    attempt_number: int = 1,
) -> ActivityGrade:
    """Re-derive the grade of a stored attempt from its raw payload."""

    if activity_type == "quiz":
        return grade_quiz(
            raw_result.get("questions") or [],
            raw_result.get("answers") or {},
            attempt_number,
            raw_result.get("reward_schedule"),
            mode=raw_result.get("mode", ""),
        )
    if activity_type == "lab":
        return grade_lab(raw_result.get("total_tests", 0), raw_result.get("passed_tests", 0))
    if activity_type == "dialogue":
        covered = raw_result.get("covered_objectives") or []
        covered_count = len(set(covered)) if isinstance(covered, (list, tuple, set)) else _count(covered)
        return grade_dialogue(raw_result.get("total_objectives", 0), covered_count)
    raise ValueError(f"Unknown activity type: {activity_type}")
