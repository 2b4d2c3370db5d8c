"""Domain records for quizzes and play sessions.

Records are frozen dataclasses; every change produces a new value through
``dataclasses.replace``. ``to_dict`` renders the stored/wire document with
the camelCase field names existing clients and stored data already use, and
``from_dict`` validates such a document back into a record.
"""

from __future__ import annotations

import enum
import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Tuple

from quizmaster.errors import ValidationError

SOLO_PARTICIPANT_ID = 'solo-player'


def new_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(moment: datetime) -> str:
    """Millisecond precision UTC timestamp with a ``Z`` suffix."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime('%Y-%m-%dT%H:%M:%S.') + f'{moment.microsecond // 1000:03d}Z'


class SessionStatus(str, enum.Enum):
    WAITING = 'waiting'
    ACTIVE = 'active'
    COMPLETED = 'completed'


# ---- field helpers ----

def _require(data: Dict[str, Any], key: str) -> Any:
    if not isinstance(data, dict):
        raise ValidationError('Expected an object')
    if key not in data:
        raise ValidationError(f"Missing field '{key}'")
    return data[key]


def _string(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(f'{name} must be a string')
    return value


def _boolean(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f'{name} must be true or false')
    return value


def _number(value: Any, name: str):
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError(f'{name} must be a number')
    return value


def _optional_string(value: Any, name: str) -> Optional[str]:
    return None if value is None else _string(value, name)


# ---- quiz side ----

@dataclass(frozen=True)
class Question:
    """Multiple-choice question. ``correct_answer`` always names one of ``options``."""

    id: str
    text: str
    options: Tuple[str, ...]
    correct_answer: str
    time_limit: float
    category: str = ''
    shuffle_options: bool = False

    def validate(self) -> 'Question':
        if not self.id:
            raise ValidationError('Question id is required')
        if not self.text.strip():
            raise ValidationError('Question text is required')
        if len(self.options) < 2:
            raise ValidationError('At least 2 options are required')
        if any(not option.strip() for option in self.options):
            raise ValidationError('Options must not be empty')
        if len(set(self.options)) != len(self.options):
            raise ValidationError('All options must be unique')
        if self.correct_answer not in self.options:
            raise ValidationError('correctAnswer must be one of the options')
        if not self.time_limit > 0:
            raise ValidationError('timeLimit must be greater than zero')
        return self

    # Draft editing. These may leave ``correct_answer`` empty but never
    # pointing at an option that no longer exists.

    def add_option(self, text: str) -> 'Question':
        if text in self.options:
            raise ValidationError(f"Option '{text}' already exists")
        return replace(self, options=self.options + (text,))

    def rename_option(self, index: int, text: str) -> 'Question':
        if not 0 <= index < len(self.options):
            raise ValidationError(f'Option index {index} out of range')
        old = self.options[index]
        if text != old and text in self.options:
            raise ValidationError(f"Option '{text}' already exists")
        options = self.options[:index] + (text,) + self.options[index + 1:]
        correct = text if self.correct_answer == old else self.correct_answer
        return replace(self, options=options, correct_answer=correct)

    def remove_option(self, index: int) -> 'Question':
        if not 0 <= index < len(self.options):
            raise ValidationError(f'Option index {index} out of range')
        removed = self.options[index]
        options = self.options[:index] + self.options[index + 1:]
        correct = '' if self.correct_answer == removed else self.correct_answer
        return replace(self, options=options, correct_answer=correct)

    def with_correct_answer(self, answer: str) -> 'Question':
        if answer not in self.options:
            raise ValidationError('correctAnswer must be one of the options')
        return replace(self, correct_answer=answer)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'text': self.text,
            'options': list(self.options),
            'correctAnswer': self.correct_answer,
            'timeLimit': self.time_limit,
            'category': self.category,
            'shuffleOptions': self.shuffle_options,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Question':
        options = _require(data, 'options')
        if not isinstance(options, list):
            raise ValidationError('options must be an array')
        return cls(
            id=_string(_require(data, 'id'), 'id'),
            text=_string(_require(data, 'text'), 'text'),
            options=tuple(_string(o, 'option') for o in options),
            correct_answer=_string(_require(data, 'correctAnswer'), 'correctAnswer'),
            time_limit=_number(_require(data, 'timeLimit'), 'timeLimit'),
            category=_string(data.get('category', ''), 'category'),
            shuffle_options=_boolean(data.get('shuffleOptions', False), 'shuffleOptions'),
        ).validate()


@dataclass(frozen=True)
class QuizSettings:
    shuffle_questions: bool = False
    default_time_limit: float = 30

    def to_dict(self) -> Dict[str, Any]:
        return {
            'shuffleQuestions': self.shuffle_questions,
            'defaultTimeLimit': self.default_time_limit,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'QuizSettings':
        data = data or {}
        default_time_limit = _number(data.get('defaultTimeLimit', 30), 'defaultTimeLimit')
        if not default_time_limit > 0:
            raise ValidationError('defaultTimeLimit must be greater than zero')
        return cls(
            shuffle_questions=_boolean(data.get('shuffleQuestions', False), 'shuffleQuestions'),
            default_time_limit=default_time_limit,
        )


@dataclass(frozen=True)
class Quiz:
    id: str
    title: str
    description: str = ''
    category: str = ''
    created_at: str = ''
    questions: Tuple[Question, ...] = ()
    settings: QuizSettings = field(default_factory=QuizSettings)

    def validate(self) -> 'Quiz':
        if not self.id:
            raise ValidationError('Quiz id is required')
        if not self.title.strip():
            raise ValidationError('Title is required')
        seen = set()
        for question in self.questions:
            question.validate()
            if question.id in seen:
                raise ValidationError(f'Duplicate question id {question.id}')
            seen.add(question.id)
        return self

    def question(self, question_id: str) -> Optional[Question]:
        return next((q for q in self.questions if q.id == question_id), None)

    def question_index(self, question_id: str) -> int:
        for index, question in enumerate(self.questions):
            if question.id == question_id:
                return index
        return -1

    def with_questions(self, questions: Iterable[Question]) -> 'Quiz':
        return replace(self, questions=tuple(questions)).validate()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'category': self.category,
            'createdAt': self.created_at,
            'questions': [q.to_dict() for q in self.questions],
            'settings': self.settings.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Quiz':
        questions = data.get('questions', []) if isinstance(data, dict) else None
        if not isinstance(questions, list):
            raise ValidationError('questions must be an array')
        return cls(
            id=_string(_require(data, 'id'), 'id'),
            title=_string(_require(data, 'title'), 'title'),
            description=_string(data.get('description', ''), 'description'),
            category=_string(data.get('category', ''), 'category'),
            created_at=_string(data.get('createdAt', ''), 'createdAt'),
            questions=tuple(Question.from_dict(q) for q in questions),
            settings=QuizSettings.from_dict(data.get('settings')),
        ).validate()


# ---- session side ----

@dataclass(frozen=True)
class Participant:
    id: str
    name: str
    joined_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name, 'joinedAt': self.joined_at}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Participant':
        return cls(
            id=_string(_require(data, 'id'), 'id'),
            name=_string(_require(data, 'name'), 'name'),
            joined_at=_string(data.get('joinedAt', ''), 'joinedAt'),
        )


@dataclass(frozen=True)
class ParticipantResult:
    participant_id: str
    question_id: str
    answer: str
    is_correct: bool
    time_spent: float
    score: int
    submitted_at: str

    @property
    def key(self) -> Tuple[str, str]:
        return (self.participant_id, self.question_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'participantId': self.participant_id,
            'questionId': self.question_id,
            'answer': self.answer,
            'isCorrect': self.is_correct,
            'timeSpent': self.time_spent,
            'score': self.score,
            'submittedAt': self.submitted_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ParticipantResult':
        return cls(
            participant_id=_string(_require(data, 'participantId'), 'participantId'),
            question_id=_string(_require(data, 'questionId'), 'questionId'),
            answer=_string(_require(data, 'answer'), 'answer'),
            is_correct=_boolean(_require(data, 'isCorrect'), 'isCorrect'),
            time_spent=_number(_require(data, 'timeSpent'), 'timeSpent'),
            score=int(_number(_require(data, 'score'), 'score')),
            submitted_at=_string(data.get('submittedAt', ''), 'submittedAt'),
        )


@dataclass(frozen=True)
class QuizSession:
    id: str
    quiz_id: str
    started_at: str
    ended_at: Optional[str] = None
    is_solo: bool = False
    participants: Tuple[Participant, ...] = ()
    current_question_index: int = -1
    status: SessionStatus = SessionStatus.WAITING
    results: Tuple[ParticipantResult, ...] = ()

    @property
    def is_completed(self) -> bool:
        return self.status == SessionStatus.COMPLETED

    def participant(self, participant_id: str) -> Optional[Participant]:
        return next((p for p in self.participants if p.id == participant_id), None)

    def result_for(self, participant_id: str, question_id: str) -> Optional[ParticipantResult]:
        return next(
            (r for r in self.results if r.participant_id == participant_id and r.question_id == question_id),
            None,
        )

    def results_for(self, participant_id: Optional[str] = None) -> Tuple[ParticipantResult, ...]:
        if participant_id is None:
            return self.results
        return tuple(r for r in self.results if r.participant_id == participant_id)

    def validate(self) -> 'QuizSession':
        participant_ids = [p.id for p in self.participants]
        if len(set(participant_ids)) != len(participant_ids):
            raise ValidationError('Participant ids must be unique')
        keys = [r.key for r in self.results]
        if len(set(keys)) != len(keys):
            raise ValidationError('Only one result per participant and question is allowed')
        if self.current_question_index < -1:
            raise ValidationError('currentQuestionIndex must be -1 or greater')
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'quizId': self.quiz_id,
            'startedAt': self.started_at,
            'endedAt': self.ended_at,
            'isSolo': self.is_solo,
            'participants': [p.to_dict() for p in self.participants],
            'currentQuestionIndex': self.current_question_index,
            'status': self.status.value,
            'results': [r.to_dict() for r in self.results],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'QuizSession':
        participants = data.get('participants', []) if isinstance(data, dict) else None
        results = data.get('results', []) if isinstance(data, dict) else None
        if not isinstance(participants, list) or not isinstance(results, list):
            raise ValidationError('participants and results must be arrays')
        status = _require(data, 'status')
        try:
            status = SessionStatus(status)
        except ValueError:
            raise ValidationError(f'Unknown session status {status!r}')
        index = _number(data.get('currentQuestionIndex', -1), 'currentQuestionIndex')
        return cls(
            id=_string(_require(data, 'id'), 'id'),
            quiz_id=_string(_require(data, 'quizId'), 'quizId'),
            started_at=_string(data.get('startedAt', ''), 'startedAt'),
            ended_at=_optional_string(data.get('endedAt'), 'endedAt'),
            is_solo=_boolean(data.get('isSolo', False), 'isSolo'),
            participants=tuple(Participant.from_dict(p) for p in participants),
            current_question_index=int(index),
            status=status,
            results=tuple(ParticipantResult.from_dict(r) for r in results),
        ).validate()
