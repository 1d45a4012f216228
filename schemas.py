"""Pydantic schemas for graded attempts, course ledgers and scoring results."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Union

from pydantic import BaseModel, Field

__all__ = [
    "ActivityType",
    "QuizScoringMode",
    "QuizQuestion",
    "QuizGrade",
    "LabGrade",
    "DialogueGrade",
    "ActivityGrade",
    "ActivityAttempt",
    "CoursePointsLedger",
    "AttemptHistory",
    "COURSE_POINT_CEILING",
]

COURSE_POINT_CEILING = 120

ActivityType = Literal["quiz", "lab", "dialogue"]


class QuizScoringMode(str, Enum):
    """Quiz point formulas; callers pick one explicitly."""

    ATTEMPT_REWARD = "attempt_reward"
    PERFORMANCE = "performance"


class QuizQuestion(BaseModel):
    correct_option: int = Field(description="Index of the correct option for the question.")
    question_id: str | None = Field(
        default=None,
        description="Optional stable identifier of the question.",
    )


class QuizGrade(BaseModel):
    activity_type: Literal["quiz"] = "quiz"
    mode: QuizScoringMode
    points_awarded: int = Field(ge=0, le=100)
    correct_count: int = Field(ge=0)
    total_questions: int = Field(ge=0)
    score_percent: int = Field(ge=0, le=100)
    passed: bool = Field(
        default=False,
        description="True when every question was answered correctly.",
    )

    @property
    def computed_score(self) -> int:
        return self.score_percent


class LabGrade(BaseModel):
    activity_type: Literal["lab"] = "lab"
    points_awarded: int = Field(ge=0, le=100)
    passed_tests: int = Field(ge=0)
    total_tests: int = Field(ge=0)
    pass_percent: int = Field(ge=0, le=100)
    passed: bool = False

    @property
    def computed_score(self) -> int:
        return self.pass_percent


class DialogueGrade(BaseModel):
    activity_type: Literal["dialogue"] = "dialogue"
    points_awarded: int = Field(ge=0, le=100)
    covered_objectives: int = Field(ge=0)
    total_objectives: int = Field(ge=0)
    coverage_percent: int = Field(ge=0, le=100)
    passed: bool = False

    @property
    def computed_score(self) -> int:
        return self.coverage_percent


ActivityGrade = Union[QuizGrade, LabGrade, DialogueGrade]


class ActivityAttempt(BaseModel):
    attempt_id: int | None = None
    activity_id: str
    activity_type: ActivityType
    user_id: str
    course_id: str
    attempt_number: int = Field(ge=1, description="1-indexed attempt counter per (user, activity).")
    raw_result: Dict[str, Any] = Field(
        default_factory=dict,
        description="Type-specific payload sufficient to re-grade the attempt.",
    )
    computed_score: int = Field(ge=0, le=100)
    points_awarded: int = Field(ge=0, le=100)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CoursePointsLedger(BaseModel):
    user_id: str
    course_id: str
    total_points: int = Field(default=0, ge=0)
    attempts_count: int = Field(default=0, ge=0)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {
        "frozen": True,
    }


class AttemptHistory(BaseModel):
    attempts: List[ActivityAttempt] = Field(default_factory=list)
    total_points: int = 0
