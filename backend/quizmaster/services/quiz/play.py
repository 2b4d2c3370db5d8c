"""Question ordering for a play view.

The randomness source is always passed in, so a seeded ``random.Random``
reproduces the same order.
"""

import random
from typing import Dict, List, Optional, Sequence, Tuple

from quizmaster.domain import Question, Quiz


def shuffled_questions(quiz: Quiz, rng: random.Random) -> Tuple[Question, ...]:
    questions = list(quiz.questions)
    if quiz.settings.shuffle_questions:
        rng.shuffle(questions)
    return tuple(questions)


def shuffled_options(question: Question, rng: random.Random) -> Tuple[str, ...]:
    options = list(question.options)
    if question.shuffle_options:
        rng.shuffle(options)
    return tuple(options)


class PlayCursor:
    """One participant's walk through a quiz.

    The question order is fixed when the cursor is built (callers sharing one
    order across a session pass it in as ``questions``) and each question's
    option order is fixed the first time it is displayed, so re-rendering
    never reshuffles.
    """

    def __init__(self, quiz: Quiz, rng: random.Random,
                 questions: Optional[Sequence[Question]] = None) -> None:
        self._rng = rng
        if questions is None:
            questions = shuffled_questions(quiz, rng)
        self._questions = tuple(questions)
        self._position = 0
        self._option_orders: Dict[str, Tuple[str, ...]] = {}

    @property
    def questions(self) -> Tuple[Question, ...]:
        return self._questions

    @property
    def position(self) -> int:
        return self._position

    @property
    def is_finished(self) -> bool:
        return self._position >= len(self._questions)

    @property
    def is_last(self) -> bool:
        return self._position == len(self._questions) - 1

    def current(self) -> Optional[Question]:
        if self.is_finished:
            return None
        return self._questions[self._position]

    def display_options(self, question: Question) -> Tuple[str, ...]:
        order = self._option_orders.get(question.id)
        if order is None:
            order = shuffled_options(question, self._rng)
            self._option_orders[question.id] = order
        return order

    def advance(self) -> Optional[Question]:
        """Move to the next question and return it, or None past the end."""
        if not self.is_finished:
            self._position += 1
        return self.current()

    def view(self) -> Dict[str, object]:
        """Current question as shown to a participant (no correct answer)."""
        question = self.current()
        payload: Dict[str, object] = {
            'position': self._position,
            'total': len(self._questions),
            'finished': question is None,
            'question': None,
        }
        if question is not None:
            payload['question'] = {
                'id': question.id,
                'text': question.text,
                'options': list(self.display_options(question)),
                'timeLimit': question.time_limit,
                'category': question.category,
            }
        return payload

    def order(self) -> List[str]:
        return [q.id for q in self._questions]
