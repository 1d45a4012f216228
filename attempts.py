"""Record graded activity attempts against a points store.

The grading rules live in :mod:`engines.scoring` and never touch storage.
This module is the caller side: it applies the submission policies the
learner-facing activities enforce, asks the store to persist the attempt and
increment the course ledger atomically, and resolves the resulting tier.
"""

from __future__ import annotations

import json
import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

from engines.ranking import (
    LeaderboardEntry,
    TierProgress,
    TierTableLike,
    as_tier_table,
    count_by_tier,
    progress_to_next_tier,
    rank_leaderboard,
    resolve_tier,
)
from engines.scoring import (
    DEFAULT_REWARD_SCHEDULE,
    AttemptRewardStrategy,
    accumulate_points,
    grade_dialogue,
    grade_lab,
    grade_quiz,
    regrade_raw_result,
)
from env_validation import get_env_bool
from ranking_tiers import RankingTier
from schemas import ActivityAttempt, ActivityGrade, CoursePointsLedger, QuizQuestion, QuizScoringMode

logger = logging.getLogger(__name__)

_AUDIT_LOGGER = logging.getLogger("scoring.audit")
if not _AUDIT_LOGGER.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(message)s"))
    _AUDIT_LOGGER.addHandler(_handler)
_AUDIT_LOGGER.setLevel(logging.INFO)
_AUDIT_LOGGER.propagate = False

DIALOGUE_MIN_MESSAGES = 3
DIALOGUE_AUTO_FINISH_MESSAGES = 5
DIALOGUE_AUTO_FINISH_RATIO = 0.7

GradeCallback = Callable[[int], Tuple[Dict[str, Any], int, int]]


class SubmissionBlocked(Exception):
    """Raised when a submission policy rejects an attempt before grading."""


# ----------------------------------------------------------------------
# submission policies
# ----------------------------------------------------------------------
def lab_submission_allowed(passed_tests: int) -> bool:
    """A lab may only be submitted once at least one test passes."""

    return int(passed_tests or 0) > 0


def dialogue_can_finish(message_count: int, covered_objectives: int) -> bool:
    return int(message_count or 0) >= DIALOGUE_MIN_MESSAGES and int(covered_objectives or 0) > 0


def dialogue_should_auto_finish(message_count: int, covered_objectives: int, total_objectives: int) -> bool:
    """Whether the dialogue has enough engagement to close without the learner asking."""

    required = math.ceil(max(int(total_objectives or 0), 1) * DIALOGUE_AUTO_FINISH_RATIO)
    return int(message_count or 0) >= DIALOGUE_AUTO_FINISH_MESSAGES and int(covered_objectives or 0) >= required


# ----------------------------------------------------------------------
# storage contract
# ----------------------------------------------------------------------
class PointsStore(Protocol):
    """Persistence collaborator; the :mod:`db` module satisfies it."""

    def record_graded_attempt(
        self,
        user_id: str,
        course_id: str,
        activity_id: str,
        activity_type: str,
        grade: GradeCallback,
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]: ...

    def next_attempt_number(self, user_id: str, activity_id: str) -> int: ...

    def get_attempt(self, attempt_id: int) -> Optional[Dict[str, Any]]: ...

    def list_attempts(
        self,
        user_id: Optional[str] = None,
        *,
        activity_id: Optional[str] = None,
        course_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]: ...

    def get_course_ledger(self, user_id: str, course_id: str) -> Optional[Dict[str, Any]]: ...

    def list_course_ledgers(self, course_id: str, limit: int = 100) -> List[Dict[str, Any]]: ...

    def list_course_point_totals(self, course_id: str) -> List[int]: ...

    def list_user_ledgers(self, user_id: str) -> List[Dict[str, Any]]: ...


class InMemoryPointsStore:
    """Process-local store, used for previews and tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._attempts: List[Dict[str, Any]] = []
        self._ledgers: Dict[Tuple[str, str], CoursePointsLedger] = {}

    def next_attempt_number(self, user_id: str, activity_id: str) -> int:
        with self._lock:
            return self._next_number(user_id, activity_id)

    def _next_number(self, user_id: str, activity_id: str) -> int:
        numbers = [
            a["attempt_number"]
            for a in self._attempts
            if a["user_id"] == user_id and a["activity_id"] == activity_id
        ]
        return max(numbers, default=0) + 1

    def record_graded_attempt(
        self,
        user_id: str,
        course_id: str,
        activity_id: str,
        activity_type: str,
        grade: GradeCallback,
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        with self._lock:
            attempt_number = self._next_number(user_id, activity_id)
            raw_result, computed_score, points = grade(attempt_number)
            now = datetime.now(timezone.utc)
            attempt = {
                "attempt_id": len(self._attempts) + 1,
                "activity_id": activity_id,
                "activity_type": activity_type,
                "user_id": user_id,
                "course_id": course_id,
                "attempt_number": attempt_number,
                "raw_result": json.loads(json.dumps(raw_result)),
                "computed_score": int(computed_score),
                "points_awarded": int(points),
                "created_at": now,
            }
            self._attempts.append(attempt)

            key = (user_id, course_id)
            ledger = self._ledgers.get(key) or CoursePointsLedger(
                user_id=user_id, course_id=course_id, created_at=now
            )
            ledger = accumulate_points(ledger, points).model_copy(update={"updated_at": now})
            self._ledgers[key] = ledger
            return dict(attempt), ledger.model_dump()

    def get_attempt(self, attempt_id: int) -> Optional[Dict[str, Any]]:
        with self._lock:
            for attempt in self._attempts:
                if attempt["attempt_id"] == int(attempt_id):
                    return dict(attempt)
        return None

    def list_attempts(
        self,
        user_id: Optional[str] = None,
        *,
        activity_id: Optional[str] = None,
        course_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            rows = [
                dict(a)
                for a in reversed(self._attempts)
                if (not user_id or a["user_id"] == user_id)
                and (not activity_id or a["activity_id"] == activity_id)
                and (not course_id or a["course_id"] == course_id)
            ]
        return rows[: int(limit)]

    def get_course_ledger(self, user_id: str, course_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            ledger = self._ledgers.get((user_id, course_id))
        return ledger.model_dump() if ledger else None

    def list_course_ledgers(self, course_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        with self._lock:
            ledgers = [l for (_, course), l in self._ledgers.items() if course == course_id]
        ledgers.sort(key=lambda l: (-l.total_points, l.user_id))
        return [l.model_dump() for l in ledgers[: int(limit)]]

    def list_course_point_totals(self, course_id: str) -> List[int]:
        with self._lock:
            return [l.total_points for (_, course), l in self._ledgers.items() if course == course_id]

    def list_user_ledgers(self, user_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            ledgers = [l for (user, _), l in self._ledgers.items() if user == user_id]
        return [l.model_dump() for l in sorted(ledgers, key=lambda l: l.course_id)]


# ----------------------------------------------------------------------
# outcomes
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class AttemptOutcome:
    attempt: ActivityAttempt
    grade: ActivityGrade
    ledger: CoursePointsLedger
    tier: RankingTier
    progress: TierProgress
    tier_changed: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt": self.attempt.model_dump(mode="json"),
            "grade": self.grade.model_dump(mode="json"),
            "ledger": self.ledger.model_dump(mode="json"),
            "tier": self.tier.to_dict(),
            "progress": self.progress.to_dict(),
            "tier_changed": self.tier_changed,
        }


@dataclass(frozen=True)
class RegradeReport:
    attempt_id: int
    stored_score: int
    stored_points: int
    computed_score: int
    points_awarded: int

    @property
    def consistent(self) -> bool:
        return self.stored_score == self.computed_score and self.stored_points == self.points_awarded

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "stored_score": self.stored_score,
            "stored_points": self.stored_points,
            "computed_score": self.computed_score,
            "points_awarded": self.points_awarded,
            "consistent": self.consistent,
        }


class AttemptRecorder:
    """Grade activity submissions and apply them to course ledgers."""

    def __init__(
        self,
        store: PointsStore,
        tier_table: TierTableLike,
        *,
        reward_schedule: Sequence[int] = DEFAULT_REWARD_SCHEDULE,
        audit: Optional[bool] = None,
    ) -> None:
        self.store = store
        self.tier_table = as_tier_table(tier_table)
        self.reward_schedule = tuple(reward_schedule)
        self.audit = get_env_bool("SCORING_AUDIT_LOG", True) if audit is None else audit

    # ------------------------------------------------------------------
    def record_quiz(
        self,
        user_id: str,
        course_id: str,
        activity_id: str,
        questions: Sequence[Union[QuizQuestion, Mapping[str, Any]]],
        answers: Mapping[Any, Any],
        *,
        mode: Union[QuizScoringMode, str],
        reward_schedule: Optional[Sequence[int]] = None,
    ) -> AttemptOutcome:
        mode = QuizScoringMode(mode)
        schedule = list(self.reward_schedule if reward_schedule is None else reward_schedule)
        question_models = [
            q if isinstance(q, QuizQuestion) else QuizQuestion.model_validate(q) for q in questions
        ]
        raw_result = {
            "questions": [q.model_dump() for q in question_models],
            "answers": {str(k): v for k, v in (answers or {}).items()},
            "mode": mode.value,
            "reward_schedule": schedule,
        }

        def _grade(attempt_number: int) -> ActivityGrade:
            return grade_quiz(question_models, answers, attempt_number, schedule, mode=mode)

        return self._record(user_id, course_id, activity_id, "quiz", raw_result, _grade)

    def record_lab(
        self,
        user_id: str,
        course_id: str,
        activity_id: str,
        total_tests: int,
        passed_tests: int,
    ) -> AttemptOutcome:
        if not lab_submission_allowed(passed_tests):
            raise SubmissionBlocked("At least one test must pass before submitting")
        raw_result = {"total_tests": int(total_tests), "passed_tests": int(passed_tests)}

        def _grade(attempt_number: int) -> ActivityGrade:
            return grade_lab(total_tests, passed_tests)

        return self._record(user_id, course_id, activity_id, "lab", raw_result, _grade)

    def record_dialogue(
        self,
        user_id: str,
        course_id: str,
        activity_id: str,
        total_objectives: int,
        covered_objectives: Sequence[int],
        message_count: int,
    ) -> AttemptOutcome:
        total = max(int(total_objectives), 0)
        covered = sorted({int(idx) for idx in covered_objectives if 0 <= int(idx) < total})
        if not dialogue_can_finish(message_count, len(covered)):
            raise SubmissionBlocked(
                f"Dialogue needs at least {DIALOGUE_MIN_MESSAGES} messages and one covered objective"
            )
        raw_result = {
            "total_objectives": total,
            "covered_objectives": covered,
            "message_count": int(message_count),
        }

        def _grade(attempt_number: int) -> ActivityGrade:
            return grade_dialogue(total, len(covered))

        return self._record(user_id, course_id, activity_id, "dialogue", raw_result, _grade)

    def _record(
        self,
        user_id: str,
        course_id: str,
        activity_id: str,
        activity_type: str,
        raw_result: Dict[str, Any],
        grade: Callable[[int], ActivityGrade],
    ) -> AttemptOutcome:
        graded: List[ActivityGrade] = []

        def _apply(attempt_number: int) -> Tuple[Dict[str, Any], int, int]:
            result = grade(attempt_number)
            graded.append(result)
            return raw_result, result.computed_score, result.points_awarded

        attempt_row, ledger_row = self.store.record_graded_attempt(
            user_id, course_id, activity_id, activity_type, _apply
        )
        attempt = ActivityAttempt.model_validate(attempt_row)
        ledger = CoursePointsLedger.model_validate(ledger_row)
        result = graded[-1]

        tier = resolve_tier(ledger.total_points, self.tier_table)
        previous = resolve_tier(ledger.total_points - attempt.points_awarded, self.tier_table)
        progress = progress_to_next_tier(ledger.total_points, self.tier_table)

        if self.audit:
            _AUDIT_LOGGER.info(
                json.dumps(
                    {
                        "event": "attempt_recorded",
                        "user_id": user_id,
                        "course_id": course_id,
                        "activity_id": activity_id,
                        "activity_type": activity_type,
                        "attempt_number": attempt.attempt_number,
                        "points_awarded": attempt.points_awarded,
                        "total_points": ledger.total_points,
                        "tier": tier.name,
                    },
                    ensure_ascii=False,
                )
            )
        if previous.rank != tier.rank:
            logger.info("User %s reached tier %s in course %s", user_id, tier.name, course_id)

        return AttemptOutcome(
            attempt=attempt,
            grade=result,
            ledger=ledger,
            tier=tier,
            progress=progress,
            tier_changed=previous.rank != tier.rank,
        )

    # ------------------------------------------------------------------
    def regrade(self, attempt_id: int) -> Optional[RegradeReport]:
        """Re-derive an attempt's grade from its stored raw result."""

        row = self.store.get_attempt(attempt_id)
        if row is None:
            return None
        result = regrade_raw_result(row["activity_type"], row["raw_result"], row["attempt_number"])
        report = RegradeReport(
            attempt_id=int(row["attempt_id"]),
            stored_score=int(row["computed_score"]),
            stored_points=int(row["points_awarded"]),
            computed_score=result.computed_score,
            points_awarded=result.points_awarded,
        )
        if not report.consistent:
            logger.warning("Attempt %s no longer reproduces its stored grade", attempt_id)
        return report

    def quiz_reward_preview(self, user_id: str, activity_id: str) -> Dict[str, Any]:
        """Attempt number and attempt-reward points the next quiz submission would get."""

        attempt_number = self.store.next_attempt_number(user_id, activity_id)
        reward = AttemptRewardStrategy(self.reward_schedule).reward_for(attempt_number)
        return {"attempt_number": attempt_number, "reward": reward}

    def ledger(self, user_id: str, course_id: str) -> CoursePointsLedger:
        row = self.store.get_course_ledger(user_id, course_id)
        if row is None:
            return CoursePointsLedger(user_id=user_id, course_id=course_id)
        return CoursePointsLedger.model_validate(row)

    def overall_points(self, user_id: str) -> int:
        return sum(int(row["total_points"]) for row in self.store.list_user_ledgers(user_id))

    def leaderboard(self, course_id: str, limit: Optional[int] = None) -> List[LeaderboardEntry]:
        rows = self.store.list_course_ledgers(course_id, limit=limit or 100)
        ledgers = [CoursePointsLedger.model_validate(row) for row in rows]
        return rank_leaderboard(ledgers, self.tier_table, limit=limit)

    def tier_distribution(self, course_id: str) -> Dict[str, int]:
        """Learners per tier across the whole course, not just the listed page."""
        return count_by_tier(self.store.list_course_point_totals(course_id), self.tier_table)
