import requests
import time
import random

BASE_URL = "http://127.0.0.1:8000"

# Activities by course
COURSES = {
    "bpmn-basics": {
        "quizzes": ["bpmn-quiz-events", "bpmn-quiz-gateways"],
        "labs": ["bpmn-lab-order-process"],
        "dialogues": ["bpmn-dialogue-swimlanes"],
    },
    "quadratics": {
        "quizzes": ["quad-quiz-vertex", "quad-quiz-zeros"],
        "labs": ["quad-lab-optimizer"],
        "dialogues": ["quad-dialogue-parameters"],
    },
}

# Rough share of correct answers / passing tests per learner
USERS = {
    "alice": 0.9,
    "peter": 0.7,
    "marco": 0.5,
}

QUESTIONS_PER_QUIZ = 5
TESTS_PER_LAB = 10
OBJECTIVES_PER_DIALOGUE = 5


def test_connection():
    try:
        r = requests.get(f"{BASE_URL}/tiers")
        print(f"Server status: {r.status_code}")
        return r.status_code == 200
    except requests.RequestException as e:
        print(f"Server connection error: {e}")
        return False


def _post(path, payload):
    try:
        resp = requests.post(f"{BASE_URL}{path}", json=payload)
    except requests.RequestException as e:
        print(f" → Exception on {path}: {e}")
        return None
    if resp.status_code == 409:
        print(f" → Blocked: {resp.json().get('detail')}")
        return None
    if not resp.ok:
        print(f" → Error on {path}: {resp.status_code}")
        return None
    return resp.json()


def simulate_quiz(user_id, course_id, activity_id, skill, mode):
    questions = [{"correct_option": random.randint(0, 3)} for _ in range(QUESTIONS_PER_QUIZ)]
    answers = {}
    for idx, question in enumerate(questions):
        if random.random() < skill:
            answers[str(idx)] = question["correct_option"]
        else:
            answers[str(idx)] = (question["correct_option"] + 1) % 4
    return _post("/attempts/quiz", {
        "user_id": user_id,
        "course_id": course_id,
        "activity_id": activity_id,
        "questions": questions,
        "answers": answers,
        "mode": mode,
    })


def simulate_lab(user_id, course_id, activity_id, skill):
    passed = sum(1 for _ in range(TESTS_PER_LAB) if random.random() < skill)
    return _post("/attempts/lab", {
        "user_id": user_id,
        "course_id": course_id,
        "activity_id": activity_id,
        "total_tests": TESTS_PER_LAB,
        "passed_tests": passed,
    })


def simulate_dialogue(user_id, course_id, activity_id, skill):
    covered = [idx for idx in range(OBJECTIVES_PER_DIALOGUE) if random.random() < skill]
    return _post("/attempts/dialogue", {
        "user_id": user_id,
        "course_id": course_id,
        "activity_id": activity_id,
        "total_objectives": OBJECTIVES_PER_DIALOGUE,
        "covered_objectives": covered,
        "message_count": random.randint(3, 8),
    })


def _report(user_id, outcome):
    if not outcome:
        return
    attempt = outcome["attempt"]
    print(
        f"[{user_id}] {attempt['activity_type']} {attempt['activity_id']} "
        f"#{attempt['attempt_number']}: +{attempt['points_awarded']} "
        f"→ {outcome['ledger']['total_points']} ({outcome['tier']['name']})"
    )


def run_seed():
    if not test_connection():
        return

    recorded = 0
    for user, skill in USERS.items():
        for course_id, activities in COURSES.items():
            print(f"\nSeeding {user} in {course_id}")
            for activity_id in activities["quizzes"]:
                for _ in range(random.randint(1, 3)):
                    outcome = simulate_quiz(user, course_id, activity_id, skill, "attempt_reward")
                    _report(user, outcome)
                    recorded += bool(outcome)
                    time.sleep(0.1)
            for activity_id in activities["labs"]:
                outcome = simulate_lab(user, course_id, activity_id, skill)
                _report(user, outcome)
                recorded += bool(outcome)
            for activity_id in activities["dialogues"]:
                outcome = simulate_dialogue(user, course_id, activity_id, skill)
                _report(user, outcome)
                recorded += bool(outcome)

    print(f"\nAttempts recorded: {recorded}")

    # Check leaderboards after seeding
    for course_id in COURSES:
        r = requests.get(f"{BASE_URL}/leaderboard/{course_id}")
        if r.ok:
            board = r.json()
            print(f"\n{course_id} leaderboard")
            for entry in board["entries"]:
                print(f"  {entry['position']}. {entry['user_id']}: {entry['total_points']} ({entry['tier']['name']})")
        else:
            print(f"Failed to get leaderboard for {course_id}")


if __name__ == "__main__":
    run_seed()
