import asyncio
import json
import sys
from pathlib import Path
from urllib.parse import urlencode

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import app


def _request(method: str, path: str, payload: dict | None = None, query: dict | None = None) -> tuple[int, dict]:
    async def _call():
        body = json.dumps(payload).encode("utf-8") if payload is not None else b""
        received_once = False

        async def receive():
            nonlocal received_once
            if not received_once:
                received_once = True
                return {"type": "http.request", "body": body, "more_body": False}
            return {"type": "http.disconnect"}

        messages = []

        async def send(message):
            messages.append(message)

        scope = {
            "type": "http",
            "http_version": "1.1",
            "method": method,
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "scheme": "http",
            "query_string": urlencode(query or {}).encode(),
            "headers": [
                (b"host", b"testserver"),
                (b"content-type", b"application/json"),
                (b"content-length", str(len(body)).encode()),
            ],
            "client": ("testclient", 12345),
            "server": ("testserver", 80),
            "state": {},
        }

        await app.app(scope, receive, send)
        return messages

    messages = asyncio.run(_call())
    status = 500
    body_bytes = b""

    for message in messages:
        if message["type"] == "http.response.start":
            status = message["status"]
        elif message["type"] == "http.response.body":
            body_bytes += message.get("body", b"")

    data = json.loads(body_bytes.decode("utf-8") or "{}")
    return status, data


def _post_json(path: str, payload: dict) -> tuple[int, dict]:
    return _request("POST", path, payload)


def _get(path: str, **query) -> tuple[int, dict]:
    return _request("GET", path, query=query)


QUESTIONS = [{"correct_option": 1}, {"correct_option": 0}, {"correct_option": 2}]


def test_grade_quiz_requires_mode():
    status, _ = _post_json("/grade/quiz", {"questions": QUESTIONS, "answers": {"0": 1}})
    assert status == 422

    status, payload = _post_json(
        "/grade/quiz",
        {"questions": QUESTIONS, "answers": {"0": 1, "1": 0}, "mode": "performance"},
    )
    assert status == 200
    assert payload["points_awarded"] == 46
    assert payload["computed_score"] == 67
    assert payload["mode"] == "performance"


def test_grade_quiz_attempt_reward_uses_schedule():
    status, payload = _post_json(
        "/grade/quiz",
        {"questions": QUESTIONS, "attempt_number": 9, "mode": "attempt_reward", "reward_schedule": [9, 4]},
    )
    assert status == 200
    assert payload["points_awarded"] == 4


def test_grade_lab_and_dialogue():
    status, payload = _post_json("/grade/lab", {"total_tests": 10, "passed_tests": 5})
    assert status == 200
    assert payload["points_awarded"] == 40
    assert payload["pass_percent"] == 50

    status, payload = _post_json(
        "/grade/dialogue",
        {"total_objectives": 5, "covered_objectives": [0, 1, 2, 3, 3], "message_count": 5},
    )
    assert status == 200
    assert payload["points_awarded"] == 70
    assert payload["coverage_percent"] == 80
    assert payload["can_finish"] is True
    assert payload["should_auto_finish"] is True


def test_record_attempts_and_read_ledger(temp_db):
    status, outcome = _post_json(
        "/attempts/lab",
        {"user_id": "alice", "course_id": "bpmn", "activity_id": "lab-1", "total_tests": 10, "passed_tests": 10},
    )
    assert status == 200
    assert outcome["attempt"]["attempt_number"] == 1
    assert outcome["ledger"]["total_points"] == 100
    assert outcome["tier"]["name"] == "Platinum"

    status, outcome = _post_json(
        "/attempts/quiz",
        {
            "user_id": "alice",
            "course_id": "bpmn",
            "activity_id": "quiz-1",
            "questions": QUESTIONS,
            "answers": {"0": 1},
            "mode": "attempt_reward",
        },
    )
    assert status == 200
    assert outcome["attempt"]["points_awarded"] == 10
    assert outcome["tier"]["name"] == "Diamond"
    assert outcome["tier_changed"] is True

    status, ledger = _get("/ledger", user_id="alice", course_id="bpmn")
    assert status == 200
    assert ledger["ledger"]["total_points"] == 110
    assert ledger["ledger"]["attempts_count"] == 2
    assert ledger["progress"]["percent_within_tier"] == 100.0
    assert ledger["ceiling_percent"] == 92

    status, history = _get("/attempts", user_id="alice")
    assert status == 200
    assert [a["activity_id"] for a in history["attempts"]] == ["quiz-1", "lab-1"]
    assert history["total_points"] == 110


def test_blocked_submissions_return_conflict(temp_db):
    status, payload = _post_json(
        "/attempts/lab",
        {"user_id": "alice", "course_id": "bpmn", "activity_id": "lab-1", "total_tests": 10, "passed_tests": 0},
    )
    assert status == 409
    assert "test" in payload["detail"]

    status, _ = _post_json(
        "/attempts/dialogue",
        {
            "user_id": "alice",
            "course_id": "bpmn",
            "activity_id": "dlg-1",
            "total_objectives": 4,
            "covered_objectives": [],
            "message_count": 8,
        },
    )
    assert status == 409

    status, ledger = _get("/ledger", user_id="alice", course_id="bpmn")
    assert status == 200
    assert ledger["ledger"]["total_points"] == 0
    assert ledger["tier"]["name"] == "Bronze III"


def test_missing_identifiers_are_rejected(temp_db):
    status, payload = _get("/ledger", user_id="alice")
    assert status == 400
    assert payload["detail"] == "course_id required"

    status, payload = _post_json(
        "/attempts/lab",
        {"user_id": " ", "course_id": "bpmn", "activity_id": "lab-1", "total_tests": 1, "passed_tests": 1},
    )
    assert status == 400
    assert payload["detail"] == "user_id required"


def test_regrade_endpoint(temp_db):
    _, outcome = _post_json(
        "/attempts/dialogue",
        {
            "user_id": "bob",
            "course_id": "bpmn",
            "activity_id": "dlg-1",
            "total_objectives": 5,
            "covered_objectives": [0, 1, 2],
            "message_count": 4,
        },
    )
    attempt_id = outcome["attempt"]["attempt_id"]

    status, report = _post_json(f"/attempts/{attempt_id}/regrade", {})
    assert status == 200
    assert report["consistent"] is True
    assert report["points_awarded"] == 40

    status, payload = _post_json("/attempts/4040/regrade", {})
    assert status == 404
    assert payload["detail"] == "attempt not found"


def test_badge_sums_course_ledgers(temp_db):
    for course in ("bpmn", "math"):
        _post_json(
            "/attempts/lab",
            {"user_id": "carol", "course_id": course, "activity_id": "lab-1", "total_tests": 2, "passed_tests": 1},
        )
    status, payload = _get("/users/carol/badge")
    assert status == 200
    assert payload["overall_points"] == 80
    assert payload["badge"]["name"] == "Expert"
    assert [c["course_id"] for c in payload["courses"]] == ["bpmn", "math"]


def test_tier_endpoints():
    status, payload = _get("/tiers")
    assert status == 200
    assert len(payload["tiers"]) == 7
    assert payload["tiers"][-1]["icon"] == "crown"

    status, payload = _get("/tiers/resolve", points=65)
    assert status == 200
    assert payload["tier"]["name"] == "Silver"
    assert payload["progress"]["points_needed"] == 15

    status, _ = _get("/tiers/resolve", points="lots")
    assert status == 422


def test_leaderboard_endpoint(temp_db):
    for user, passed in (("amy", 4), ("ben", 2), ("cal", 4), ("dan", 1)):
        _post_json(
            "/attempts/lab",
            {"user_id": user, "course_id": "bpmn", "activity_id": "lab-1", "total_tests": 4, "passed_tests": passed},
        )

    status, payload = _get("/leaderboard/bpmn")
    assert status == 200
    assert [(e["position"], e["user_id"]) for e in payload["entries"]] == [
        (1, "amy"), (1, "cal"), (3, "ben"), (4, "dan"),
    ]
    assert payload["distribution"]["Platinum"] == 2
    assert payload["distribution"]["Bronze I"] == 1

    status, payload = _get("/leaderboard/bpmn", limit=1)
    assert [e["user_id"] for e in payload["entries"]] == ["amy"]

    status, payload = _get("/leaderboard/bpmn", tier="platinum")
    assert status == 200
    assert [e["user_id"] for e in payload["entries"]] == ["amy", "cal"]

    status, payload = _get("/leaderboard/bpmn", tier="Obsidian")
    assert status == 400

    status, payload = _get("/leaderboard/bpmn", limit=0)
    assert status == 400


@pytest.mark.parametrize("path", ["/attempts/quiz", "/attempts/lab", "/attempts/dialogue"])
def test_attempt_bodies_are_validated(path):
    status, _ = _post_json(path, {"user_id": "alice"})
    assert status == 422


def test_quiz_preview_endpoint_agrees_with_recorded_points(temp_db, monkeypatch):
    monkeypatch.setattr(app.RECORDER, "reward_schedule", (150, -5))
    body = {
        "user_id": "alice",
        "course_id": "bpmn",
        "activity_id": "quiz-1",
        "questions": QUESTIONS,
        "answers": {"0": 1, "1": 0, "2": 2},
        "mode": "attempt_reward",
    }

    status, preview = _get("/attempts/quiz/preview", user_id="alice", activity_id="quiz-1")
    assert status == 200
    assert preview == {"attempt_number": 1, "reward": 100}

    _, outcome = _post_json("/attempts/quiz", body)
    assert outcome["attempt"]["points_awarded"] == preview["reward"]

    status, preview = _get("/attempts/quiz/preview", user_id="alice", activity_id="quiz-1")
    assert preview == {"attempt_number": 2, "reward": 0}

    status, payload = _get("/attempts/quiz/preview", user_id="alice")
    assert status == 400
    assert payload["detail"] == "activity_id required"


def test_badge_uses_recorder_overall_points(temp_db, monkeypatch):
    monkeypatch.setattr(app.RECORDER, "overall_points", lambda user_id: 250)
    status, payload = _get("/users/zoe/badge")
    assert status == 200
    assert payload["overall_points"] == 250
    assert payload["badge"] == app.resolve_badge(250, app.BADGE_LEVELS).to_dict()
    assert payload["courses"] == []


def test_leaderboard_distribution_is_not_capped_by_page_size(temp_db, monkeypatch):
    for user, passed in (("amy", 4), ("ben", 2), ("cal", 4), ("dan", 1)):
        _post_json(
            "/attempts/lab",
            {"user_id": user, "course_id": "bpmn", "activity_id": "lab-1", "total_tests": 4, "passed_tests": passed},
        )
    monkeypatch.setattr(app, "MAX_LEADERBOARD_LIMIT", 2)

    status, payload = _get("/leaderboard/bpmn", limit=2)
    assert status == 200
    assert [e["user_id"] for e in payload["entries"]] == ["amy", "cal"]
    assert sum(payload["distribution"].values()) == 4
    assert payload["distribution"]["Bronze III"] == 1
