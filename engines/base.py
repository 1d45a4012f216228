from typing import Sequence

from schemas import QuizScoringMode


class QuizScoringStrategy:
    mode: QuizScoringMode

    def points(self, correct_count: int, total_questions: int, attempt_number: int) -> int:
        raise NotImplementedError

    def describe(self) -> dict:
        return {"mode": self.mode.value}


def clamp_points(value: int, *, upper: int = 100) -> int:
    return max(0, min(int(value), upper))


def normalise_schedule(schedule: Sequence[int]) -> tuple:
    return tuple(clamp_points(value) for value in schedule)
