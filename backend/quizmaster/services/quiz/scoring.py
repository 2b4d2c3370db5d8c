import math
from typing import NamedTuple

from quizmaster.domain import Question
from quizmaster.errors import ValidationError

BASE_SCORE = 100
MAX_TIME_BONUS = 50


class Score(NamedTuple):
    is_correct: bool
    score: int


def clamp_time_spent(time_spent: float, time_limit: float) -> float:
    """Clamp elapsed seconds into ``[0, time_limit]`` before scoring."""
    if isinstance(time_spent, bool) or not isinstance(time_spent, (int, float)) or math.isnan(time_spent):
        raise ValidationError('timeSpent must be a number')
    return min(max(time_spent, 0), time_limit)


def score(question: Question, answer: str, time_spent: float) -> Score:
    """Score one answer.

    100 points for the exact correct answer plus a time bonus decaying
    linearly from 50 (instant) to 0 (at the time limit). Wrong or empty
    answers score 0. ``time_spent`` must already be clamped.
    """
    if isinstance(time_spent, bool) or not isinstance(time_spent, (int, float)) \
            or not math.isfinite(time_spent) or time_spent < 0:
        raise ValidationError('timeSpent must be a non-negative number')
    is_correct = answer == question.correct_answer
    if not is_correct:
        return Score(False, 0)
    bonus = max(0, math.floor((1 - time_spent / question.time_limit) * MAX_TIME_BONUS))
    return Score(True, BASE_SCORE + bonus)
