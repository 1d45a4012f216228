# app.py - Learner Points & Tier Ranking service
# - Pure grading endpoints (no persistence)
# - Attempt recording with atomic course ledger increments
# - Tier, badge and leaderboard views over the course ledgers

import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

import db
from attempts import (
    AttemptRecorder,
    SubmissionBlocked,
    dialogue_can_finish,
    dialogue_should_auto_finish,
)
from engines.ranking import ceiling_percent, progress_to_next_tier, resolve_badge, resolve_tier
from engines.scoring import grade_dialogue, grade_lab, grade_quiz
from env_validation import MAX_LEADERBOARD_LIMIT, get_leaderboard_limit, get_reward_schedule
from ranking_tiers import BADGE_LEVELS, RANKING_TIERS
from schemas import AttemptHistory, ActivityAttempt, QuizQuestion, QuizScoringMode

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        # Validate environment variables first
        from env_validation import validate_environment
        validate_environment()

        db.init()
        logger.info(
            "Loaded %d ranking tiers (%s–%s) and %d badge levels | reward schedule: %s",
            len(RANKING_TIERS),
            RANKING_TIERS.lowest().name,
            RANKING_TIERS.highest().name,
            len(BADGE_LEVELS),
            RECORDER.reward_schedule,
        )
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="Learner Points", version="1.0.0", lifespan=_lifespan)

RECORDER = AttemptRecorder(db, RANKING_TIERS, reward_schedule=get_reward_schedule())


# ---------- Request bodies ----------
class QuizGradeBody(BaseModel):
    questions: List[QuizQuestion] = Field(default_factory=list)
    answers: Dict[str, int] = Field(default_factory=dict)
    attempt_number: int = 1
    mode: QuizScoringMode
    reward_schedule: Optional[List[int]] = None


class LabGradeBody(BaseModel):
    total_tests: int
    passed_tests: int


class DialogueGradeBody(BaseModel):
    total_objectives: int
    covered_objectives: List[int] = Field(default_factory=list)
    message_count: int = 0


class QuizAttemptBody(BaseModel):
    user_id: str
    course_id: str
    activity_id: str
    questions: List[QuizQuestion] = Field(default_factory=list)
    answers: Dict[str, int] = Field(default_factory=dict)
    mode: QuizScoringMode
    reward_schedule: Optional[List[int]] = None


class LabAttemptBody(BaseModel):
    user_id: str
    course_id: str
    activity_id: str
    total_tests: int
    passed_tests: int


class DialogueAttemptBody(BaseModel):
    user_id: str
    course_id: str
    activity_id: str
    total_objectives: int
    covered_objectives: List[int] = Field(default_factory=list)
    message_count: int


def _require(value: Optional[str], name: str) -> str:
    value = (value or "").strip()
    if not value:
        raise HTTPException(status_code=400, detail=f"{name} required")
    return value


def _covered_indices(covered: List[int], total: int) -> List[int]:
    return sorted({idx for idx in covered if 0 <= idx < total})


# ---------- Grading ----------
@app.post("/grade/quiz")
def grade_quiz_endpoint(body: QuizGradeBody):
    grade = grade_quiz(
        body.questions,
        body.answers,
        body.attempt_number,
        body.reward_schedule if body.reward_schedule is not None else RECORDER.reward_schedule,
        mode=body.mode,
    )
    return {**grade.model_dump(mode="json"), "computed_score": grade.computed_score}


@app.post("/grade/lab")
def grade_lab_endpoint(body: LabGradeBody):
    grade = grade_lab(body.total_tests, body.passed_tests)
    return {**grade.model_dump(mode="json"), "computed_score": grade.computed_score}


@app.post("/grade/dialogue")
def grade_dialogue_endpoint(body: DialogueGradeBody):
    covered = _covered_indices(body.covered_objectives, body.total_objectives)
    grade = grade_dialogue(body.total_objectives, len(covered))
    return {
        **grade.model_dump(mode="json"),
        "computed_score": grade.computed_score,
        "can_finish": dialogue_can_finish(body.message_count, len(covered)),
        "should_auto_finish": dialogue_should_auto_finish(
            body.message_count, len(covered), body.total_objectives
        ),
    }


# ---------- Attempts ----------
@app.post("/attempts/quiz")
def record_quiz_attempt(body: QuizAttemptBody):
    outcome = RECORDER.record_quiz(
        _require(body.user_id, "user_id"),
        _require(body.course_id, "course_id"),
        _require(body.activity_id, "activity_id"),
        body.questions,
        body.answers,
        mode=body.mode,
        reward_schedule=body.reward_schedule,
    )
    return outcome.to_dict()


@app.post("/attempts/lab")
def record_lab_attempt(body: LabAttemptBody):
    try:
        outcome = RECORDER.record_lab(
            _require(body.user_id, "user_id"),
            _require(body.course_id, "course_id"),
            _require(body.activity_id, "activity_id"),
            body.total_tests,
            body.passed_tests,
        )
    except SubmissionBlocked as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return outcome.to_dict()


@app.post("/attempts/dialogue")
def record_dialogue_attempt(body: DialogueAttemptBody):
    try:
        outcome = RECORDER.record_dialogue(
            _require(body.user_id, "user_id"),
            _require(body.course_id, "course_id"),
            _require(body.activity_id, "activity_id"),
            body.total_objectives,
            body.covered_objectives,
            body.message_count,
        )
    except SubmissionBlocked as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return outcome.to_dict()


@app.get("/attempts/quiz/preview")
def quiz_reward_preview(user_id: str = "", activity_id: str = ""):
    return RECORDER.quiz_reward_preview(_require(user_id, "user_id"), _require(activity_id, "activity_id"))


@app.get("/attempts")
def list_attempts(
    user_id: Optional[str] = None,
    activity_id: Optional[str] = None,
    course_id: Optional[str] = None,
    limit: int = 100,
):
    if limit < 1:
        raise HTTPException(status_code=400, detail="limit must be positive")
    rows = db.list_attempts(user_id, activity_id=activity_id, course_id=course_id, limit=limit)
    attempts = [ActivityAttempt.model_validate(row) for row in rows]
    history = AttemptHistory(attempts=attempts, total_points=sum(a.points_awarded for a in attempts))
    return history.model_dump(mode="json")


@app.post("/attempts/{attempt_id}/regrade")
def regrade_attempt(attempt_id: int):
    report = RECORDER.regrade(attempt_id)
    if report is None:
        raise HTTPException(status_code=404, detail="attempt not found")
    return report.to_dict()


# ---------- Ledgers & badges ----------
@app.get("/ledger")
def course_ledger(user_id: str = "", course_id: str = ""):
    ledger = RECORDER.ledger(_require(user_id, "user_id"), _require(course_id, "course_id"))
    progress = progress_to_next_tier(ledger.total_points, RANKING_TIERS)
    return {
        "ledger": ledger.model_dump(mode="json"),
        "tier": progress.current_tier.to_dict(),
        "progress": progress.to_dict(),
        "ceiling_percent": ceiling_percent(ledger.total_points),
    }


@app.get("/users/{user_id}/badge")
def user_badge(user_id: str):
    courses = db.list_user_ledgers(user_id)
    overall = RECORDER.overall_points(user_id)
    badge = resolve_badge(overall, BADGE_LEVELS)
    return {
        "user_id": user_id,
        "overall_points": overall,
        "badge": badge.to_dict(),
        "courses": [
            {"course_id": row["course_id"], "total_points": row["total_points"]} for row in courses
        ],
    }


# ---------- Tiers & leaderboard ----------
@app.get("/tiers")
def list_tiers():
    return {"tiers": RANKING_TIERS.to_records()}


@app.get("/tiers/resolve")
def resolve_tier_endpoint(points: int):
    tier = resolve_tier(points, RANKING_TIERS)
    return {
        "points": points,
        "tier": tier.to_dict(),
        "progress": progress_to_next_tier(points, RANKING_TIERS).to_dict(),
    }


@app.get("/leaderboard/{course_id}")
def course_leaderboard(course_id: str, limit: Optional[int] = None, tier: Optional[str] = None):
    if limit is None:
        limit = get_leaderboard_limit()
    if not 1 <= limit <= MAX_LEADERBOARD_LIMIT:
        raise HTTPException(status_code=400, detail=f"limit must be between 1 and {MAX_LEADERBOARD_LIMIT}")

    ranked = RECORDER.leaderboard(course_id, limit=MAX_LEADERBOARD_LIMIT)
    distribution = RECORDER.tier_distribution(course_id)
    if tier:
        wanted = next((t for t in RANKING_TIERS if t.name.lower() == tier.strip().lower()), None)
        if wanted is None:
            raise HTTPException(status_code=400, detail=f"unknown tier: {tier}")
        ranked = [entry for entry in ranked if entry.tier.name == wanted.name]

    return {
        "course_id": course_id,
        "entries": [entry.to_dict() for entry in ranked[:limit]],
        "distribution": distribution,
    }
