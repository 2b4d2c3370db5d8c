"""Application-scoped state container for quizzes and play sessions.

``QuizService`` owns the local caches, serializes writes per session id and
is the only code that hands sessions to the state machine. The repository
is the owner of record: every write goes through it and the cache is only
ever replaced with the document it confirmed, so a failed persist leaves the
last confirmed state in place. After a confirmed write an event is published
on the bus so other observers know to refetch.
"""

import logging
import random
import threading
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from quizmaster.domain import (
    SOLO_PARTICIPANT_ID,
    Participant,
    Question,
    Quiz,
    QuizSession,
    isoformat,
    new_id,
    utc_now,
)
from quizmaster.errors import NotFoundError, RepositoryError, SessionClosedError, ValidationError
from quizmaster.repository import Repository
from . import session_machine
from . import summary as results
from .event_bus import EventBus
from .play import PlayCursor, shuffled_questions
from .scheduler import TimerKey, TimerRegistry

log = logging.getLogger(__name__)

EVENT_QUIZ_START = 'quiz:start'
EVENT_PARTICIPANT_JOIN = 'participant:join'
EVENT_ANSWER_SUBMIT = 'answer:submit'
EVENT_SESSION_UPDATE = 'session:update'
EVENT_QUIZ_END = 'quiz:end'


class QuizService:

    def __init__(self, repository: Repository, bus: Optional[EventBus] = None, *,
                 timers: Optional[TimerRegistry] = None, rng: Optional[random.Random] = None,
                 clock: Callable[[], datetime] = utc_now,
                 solo_participant_id: str = SOLO_PARTICIPANT_ID,
                 default_time_limit: float = 30,
                 on_session_change: Optional[Callable[[str], None]] = None) -> None:
        self.repository = repository
        self.bus = bus
        self.timers = timers
        self.solo_participant_id = solo_participant_id
        self.default_time_limit = default_time_limit
        self.on_session_change = on_session_change
        self._rng = rng or random.Random()
        self._clock = clock
        self._lock = threading.RLock()
        self._session_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._quizzes: Dict[str, Quiz] = {}
        self._sessions: Dict[str, QuizSession] = {}
        self._question_orders: Dict[str, Tuple[Question, ...]] = {}
        self._cursors: Dict[Tuple[str, str], PlayCursor] = {}

    # ---- cache plumbing ----

    def load(self) -> None:
        """Replace both caches with what the repository currently holds."""
        quizzes = self.repository.list_quizzes()
        sessions = self.repository.list_sessions()
        with self._lock:
            self._quizzes = {q.id: q for q in quizzes}
            self._sessions = {s.id: s for s in sessions}
        log.info('[load] quizzes=%d sessions=%d', len(quizzes), len(sessions))

    def _session_lock(self, session_id: str) -> threading.Lock:
        with self._lock:
            return self._session_locks[session_id]

    def _remember_quiz(self, quiz: Quiz) -> Quiz:
        with self._lock:
            self._quizzes[quiz.id] = quiz
        return quiz

    def _remember_session(self, session: QuizSession) -> QuizSession:
        with self._lock:
            self._sessions[session.id] = session
        return session

    def _publish(self, event_name: str, payload: Dict[str, Any]) -> None:
        if self.bus is None:
            return
        try:
            self.bus.publish(event_name, payload)
        except RepositoryError as exc:
            # The write is already confirmed; observers catch up on their next refetch.
            log.warning('[bus] could not publish %s: %s', event_name, exc)

    def _changed(self, session_id: str) -> None:
        if self.on_session_change is not None:
            self.on_session_change(session_id)

    def _now(self) -> datetime:
        return self._clock()

    # ---- quizzes ----

    def list_quizzes(self) -> List[Quiz]:
        quizzes = self.repository.list_quizzes()
        with self._lock:
            self._quizzes = {q.id: q for q in quizzes}
        return quizzes

    def get_quiz(self, quiz_id: str) -> Quiz:
        with self._lock:
            quiz = self._quizzes.get(quiz_id)
        if quiz is None:
            quiz = self.repository.get_quiz(quiz_id)
            if quiz is None:
                raise NotFoundError(f'Quiz {quiz_id} not found')
            self._remember_quiz(quiz)
        return quiz

    def _question_payload(self, item: Any, *, category: str, default_time_limit: float) -> Dict[str, Any]:
        if not isinstance(item, dict):
            raise ValidationError('Each question must be an object')
        payload = dict(item)
        payload.setdefault('id', new_id())
        if payload.get('timeLimit') is None:
            payload['timeLimit'] = default_time_limit
        if payload.get('category') is None:
            payload['category'] = category
        return payload

    def _build_quiz(self, data: Dict[str, Any], *, quiz_id: str, created_at: str) -> Quiz:
        if not isinstance(data, dict):
            raise ValidationError('Quiz must be an object')
        settings = data.get('settings') or {}
        if not isinstance(settings, dict):
            raise ValidationError('settings must be an object')
        settings = {'defaultTimeLimit': self.default_time_limit, **settings}
        questions = data.get('questions') or []
        if not isinstance(questions, list):
            raise ValidationError('questions must be an array')
        category = data.get('category') or ''
        document = {
            **data,
            'id': quiz_id,
            'createdAt': created_at,
            'settings': settings,
            'questions': [
                self._question_payload(q, category=category, default_time_limit=settings['defaultTimeLimit'])
                for q in questions
            ],
        }
        return Quiz.from_dict(document)

    def create_quiz(self, data: Dict[str, Any]) -> Quiz:
        quiz = self._build_quiz(data, quiz_id=new_id(), created_at=isoformat(self._now()))
        saved = self.repository.create_quiz(quiz)
        log.info('[quiz-create] quiz=%s questions=%d', saved.id, len(saved.questions))
        return self._remember_quiz(saved)

    def update_quiz(self, quiz_id: str, data: Dict[str, Any]) -> Quiz:
        existing = self.get_quiz(quiz_id)
        quiz = self._build_quiz(data, quiz_id=existing.id, created_at=existing.created_at)
        saved = self.repository.update_quiz(quiz)
        log.info('[quiz-update] quiz=%s questions=%d', saved.id, len(saved.questions))
        return self._remember_quiz(saved)

    def delete_quiz(self, quiz_id: str) -> None:
        self.repository.delete_quiz(quiz_id)
        with self._lock:
            self._quizzes.pop(quiz_id, None)
        log.info('[quiz-delete] quiz=%s', quiz_id)

    def import_questions(self, quiz_id: str, raw_questions: Any) -> Quiz:
        """Append a batch of questions. The first invalid item rejects the whole batch."""
        quiz = self.get_quiz(quiz_id)
        if not isinstance(raw_questions, list):
            raise ValidationError('Imported data must be an array')
        imported = []
        for position, item in enumerate(raw_questions, start=1):
            try:
                if not isinstance(item, dict):
                    raise ValidationError('expected an object')
                if not isinstance(item.get('text'), str) or not item['text'].strip():
                    raise ValidationError('text is required')
                if not isinstance(item.get('options'), list):
                    raise ValidationError('options must be an array')
                if not isinstance(item.get('correctAnswer'), str) or not item['correctAnswer']:
                    raise ValidationError('correctAnswer is required')
                payload = self._question_payload(
                    {k: v for k, v in item.items() if k != 'id'},
                    category=quiz.category,
                    default_time_limit=quiz.settings.default_time_limit,
                )
                imported.append(Question.from_dict(payload))
            except ValidationError as exc:
                raise ValidationError(f'Invalid question format at item {position}: {exc.message}')
        updated = quiz.with_questions(quiz.questions + tuple(imported))
        saved = self.repository.update_quiz(updated)
        log.info('[import] quiz=%s added=%d', quiz_id, len(imported))
        return self._remember_quiz(saved)

    # ---- sessions ----

    def list_sessions(self) -> List[QuizSession]:
        sessions = self.repository.list_sessions()
        with self._lock:
            self._sessions = {s.id: s for s in sessions}
        return sessions

    def get_session(self, session_id: str) -> QuizSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            session = self.refresh_session(session_id)
        return session

    def refresh_session(self, session_id: str) -> QuizSession:
        """Refetch a session from the repository, e.g. after a bus notification."""
        session = self.repository.get_session(session_id)
        if session is None:
            with self._lock:
                self._sessions.pop(session_id, None)
            raise NotFoundError(f'Session {session_id} not found')
        return self._remember_session(session)

    def start_session(self, quiz_id: str, is_solo: bool) -> QuizSession:
        quiz = self.get_quiz(quiz_id)
        session = session_machine.start_session(quiz, is_solo, now=self._now())
        saved = self.repository.create_session(session)
        with self._lock:
            self._question_orders[saved.id] = shuffled_questions(quiz, self._rng)
        self._remember_session(saved)
        log.info('[session-start] session=%s quiz=%s solo=%s', saved.id, quiz.id, saved.is_solo)
        self._publish(EVENT_QUIZ_START, {'sessionId': saved.id, 'quizId': quiz.id})
        self._changed(saved.id)
        return saved

    def _mutate(self, session_id: str,
                change: Callable[[QuizSession, Quiz], QuizSession]) -> Tuple[QuizSession, bool]:
        """Apply ``change`` under the session lock. Returns the confirmed session and whether it changed."""
        with self._session_lock(session_id):
            current = self.refresh_session(session_id)
            quiz = self.get_quiz(current.quiz_id)
            updated = change(current, quiz)
            if updated == current:
                return current, False
            try:
                saved = self.repository.update_session(updated)
            except RepositoryError:
                log.error('[persist-failed] session=%s keeping last confirmed state', session_id)
                self._remember_session(current)
                raise
            self._remember_session(saved)
        self._changed(session_id)
        return saved, True

    def join_room(self, session_id: str, participant_name: str) -> Participant:
        joined: List[Participant] = []

        def change(session, quiz):
            updated, participant = session_machine.join_room(session, participant_name, now=self._now())
            joined.append(participant)
            return updated

        saved, _ = self._mutate(session_id, change)
        participant = joined[0]
        log.info('[join] session=%s participant=%s name=%s', session_id, participant.id, participant.name)
        self._publish(EVENT_PARTICIPANT_JOIN, {'sessionId': session_id, 'participant': participant.to_dict()})
        self._publish(EVENT_SESSION_UPDATE, {'sessionId': saved.id})
        return participant

    def submit_answer(self, session_id: str, participant_id: str, question_id: str,
                      answer: str, time_spent: float) -> QuizSession:

        def change(session, quiz):
            return session_machine.submit_answer(
                session, quiz, participant_id, question_id, answer, time_spent, now=self._now())

        saved, _ = self._mutate(session_id, change)
        # Only a confirmed answer closes the window; a rejected one leaves the countdown running.
        if self.timers is not None:
            self.timers.cancel((session_id, participant_id, question_id))
        result = saved.result_for(participant_id, question_id)
        log.info('[answer] session=%s participant=%s question=%s correct=%s score=%s',
                 session_id, participant_id, question_id, result.is_correct, result.score)
        self._publish(EVENT_ANSWER_SUBMIT, {
            'sessionId': session_id, 'participantId': participant_id, 'questionId': question_id,
        })
        self._publish(EVENT_SESSION_UPDATE, {'sessionId': session_id})
        return saved

    def record_time_up(self, session_id: str, participant_id: str, question_id: str) -> QuizSession:
        """Close a question window with no answer. An existing result is left alone."""

        def change(session, quiz):
            if session.result_for(participant_id, question_id) is not None:
                return session
            return session_machine.record_time_up(session, quiz, participant_id, question_id, now=self._now())

        saved, changed = self._mutate(session_id, change)
        if changed:
            log.info('[time-up] session=%s participant=%s question=%s', session_id, participant_id, question_id)
            self._publish(EVENT_SESSION_UPDATE, {'sessionId': session_id})
        return saved

    def end_session(self, session_id: str) -> QuizSession:
        saved, changed = self._mutate(
            session_id, lambda session, quiz: session_machine.end_session(session, now=self._now()))
        if self.timers is not None:
            self.timers.cancel_session(session_id)
        if not changed:
            return saved
        self._forget_play_state(session_id)
        log.info('[session-end] session=%s ended_at=%s', session_id, saved.ended_at)
        self._publish(EVENT_QUIZ_END, {'sessionId': session_id})
        return saved

    def _forget_play_state(self, session_id: str) -> None:
        with self._lock:
            self._question_orders.pop(session_id, None)
            for key in [k for k in self._cursors if k[0] == session_id]:
                del self._cursors[key]

    # ---- results ----

    def summary(self, session_id: str, participant_id: Optional[str] = None) -> results.ResultSummary:
        session = self.refresh_session(session_id)
        return results.summarize(self.get_quiz(session.quiz_id), session, participant_id)

    def leaderboard(self, session_id: str) -> List[results.LeaderboardRow]:
        return results.leaderboard(self.refresh_session(session_id))

    def export_csv(self, session_id: str, participant_id: Optional[str] = None) -> str:
        session = self.refresh_session(session_id)
        return results.export_csv(self.get_quiz(session.quiz_id), session, participant_id)

    # ---- play view ----

    def _cursor(self, session: QuizSession, participant_id: str) -> PlayCursor:
        key = (session.id, participant_id)
        with self._lock:
            cursor = self._cursors.get(key)
            if cursor is None:
                quiz = self.get_quiz(session.quiz_id)
                order = self._question_orders.get(session.id)
                if order is None:
                    order = self._question_orders[session.id] = shuffled_questions(quiz, self._rng)
                cursor = PlayCursor(quiz, random.Random(self._rng.getrandbits(64)), order)
                self._cursors[key] = cursor
        return cursor

    def play_state(self, session_id: str, participant_id: str) -> Dict[str, Any]:
        session = self.get_session(session_id)
        if session.is_completed:
            total = len(self.get_quiz(session.quiz_id).questions)
            return {'position': total, 'total': total, 'finished': True, 'question': None,
                    'status': session.status.value}
        view = self._cursor(session, participant_id).view()
        view['status'] = session.status.value
        return view

    def advance_play(self, session_id: str, participant_id: str) -> Dict[str, Any]:
        """Move a participant to the next question; a solo session ends after the last one."""
        session = self.get_session(session_id)
        if session.is_completed:
            raise SessionClosedError(f'Session {session_id} is already completed')
        cursor = self._cursor(session, participant_id)
        cursor.advance()
        if cursor.is_finished and session.is_solo:
            session = self.end_session(session_id)
        view = cursor.view()
        view['status'] = session.status.value
        return view

    def start_question_timer(self, session_id: str, participant_id: str,
                             question_id: Optional[str] = None) -> Dict[str, Any]:
        if self.timers is None:
            raise ValidationError('Question timers are not enabled')
        session = self.get_session(session_id)
        if session.is_completed:
            raise SessionClosedError(f'Session {session_id} is already completed')
        quiz = self.get_quiz(session.quiz_id)
        if question_id is None:
            current = self._cursor(session, participant_id).current()
            if current is None:
                raise ValidationError('No question left to time')
            question_id = current.id
        question = quiz.question(question_id)
        if question is None:
            raise NotFoundError(f'Question {question_id} is not part of quiz {quiz.id}')
        key: TimerKey = (session_id, participant_id, question_id)
        timer = self.timers.start(key, question.time_limit, self._on_time_up)
        return {'questionId': question_id, 'duration': timer.duration, 'deadline': timer.deadline}

    def _on_time_up(self, key: TimerKey) -> None:
        session_id, participant_id, question_id = key
        try:
            self.record_time_up(session_id, participant_id, question_id)
        except (SessionClosedError, NotFoundError) as exc:
            # The session ended (or vanished) before the window closed: no result.
            log.info('[time-up-skip] key=%s %s', key, exc.message)
