"""Session lifecycle transitions: waiting -> active -> completed.

Every function takes a session value and returns a new one. Checks run
before anything is built, so a rejected call leaves nothing behind.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Optional, Tuple

from quizmaster.domain import (
    Participant,
    ParticipantResult,
    Quiz,
    QuizSession,
    SessionStatus,
    isoformat,
    new_id,
    utc_now,
)
from quizmaster.errors import InvalidQuizError, SessionClosedError, UnknownQuestionError, ValidationError
from .scoring import clamp_time_spent, score

log = logging.getLogger(__name__)


def start_session(quiz: Quiz, is_solo: bool, *, session_id: Optional[str] = None,
                  now: Optional[datetime] = None) -> QuizSession:
    if not quiz.questions:
        raise InvalidQuizError(f'Quiz {quiz.id} has no questions')
    return QuizSession(
        id=session_id or new_id(),
        quiz_id=quiz.id,
        started_at=isoformat(now or utc_now()),
        is_solo=bool(is_solo),
    )


def upsert_result(results: Tuple[ParticipantResult, ...], record: ParticipantResult) -> Tuple[ParticipantResult, ...]:
    """Replace the result with the same (participant, question) key, or append."""
    for index, existing in enumerate(results):
        if existing.key == record.key:
            return results[:index] + (record,) + results[index + 1:]
    return results + (record,)


def submit_answer(session: QuizSession, quiz: Quiz, participant_id: str, question_id: str,
                  answer: str, time_spent: float, *, now: Optional[datetime] = None) -> QuizSession:
    _ensure_open(session)
    if quiz.id != session.quiz_id:
        raise ValidationError(f'Session {session.id} does not belong to quiz {quiz.id}')
    question = quiz.question(question_id)
    if question is None:
        raise UnknownQuestionError(f'Question {question_id} is not part of quiz {quiz.id}')
    if not isinstance(participant_id, str) or not participant_id:
        raise ValidationError('participantId is required')
    if not isinstance(answer, str):
        raise ValidationError('answer must be a string')

    elapsed = clamp_time_spent(time_spent, question.time_limit)
    outcome = score(question, answer, elapsed)
    record = ParticipantResult(
        participant_id=participant_id,
        question_id=question_id,
        answer=answer,
        is_correct=outcome.is_correct,
        time_spent=elapsed,
        score=outcome.score,
        submitted_at=isoformat(now or utc_now()),
    )
    results = upsert_result(session.results, record)
    status = SessionStatus.ACTIVE if session.status == SessionStatus.WAITING else session.status
    # Group position: how many distinct questions anyone has reached so far.
    reached = len({r.question_id for r in results}) - 1
    return replace(
        session,
        results=results,
        status=status,
        current_question_index=max(session.current_question_index, reached),
    )


def record_time_up(session: QuizSession, quiz: Quiz, participant_id: str, question_id: str,
                   *, now: Optional[datetime] = None) -> QuizSession:
    """The question window closed without an answer: record it as incorrect."""
    question = quiz.question(question_id)
    if question is None:
        raise UnknownQuestionError(f'Question {question_id} is not part of quiz {quiz.id}')
    return submit_answer(session, quiz, participant_id, question_id, '', question.time_limit, now=now)


def end_session(session: QuizSession, *, now: Optional[datetime] = None) -> QuizSession:
    if session.is_completed:
        log.debug('[session-end] session=%s already completed at %s', session.id, session.ended_at)
        return session
    return replace(session, status=SessionStatus.COMPLETED, ended_at=isoformat(now or utc_now()))


def join_room(session: QuizSession, participant_name: str, *, participant_id: Optional[str] = None,
              now: Optional[datetime] = None) -> Tuple[QuizSession, Participant]:
    _ensure_open(session)
    name = participant_name.strip() if isinstance(participant_name, str) else ''
    if not name:
        raise ValidationError('Participant name is required')
    if participant_id:
        existing = session.participant(participant_id)
        if existing is not None:
            return session, existing
    participant = Participant(
        id=participant_id or new_id(),
        name=name,
        joined_at=isoformat(now or utc_now()),
    )
    return replace(session, participants=session.participants + (participant,)), participant


def _ensure_open(session: QuizSession) -> None:
    if session.is_completed:
        raise SessionClosedError(f'Session {session.id} is already completed')
