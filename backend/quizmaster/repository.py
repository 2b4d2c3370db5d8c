"""Persistence boundary for quiz and session documents.

Writes replace the whole document; the value returned by a write is the
confirmed state callers must reconcile their caches to.
"""

import copy
import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from quizmaster import db
from quizmaster.domain import Quiz, QuizSession
from quizmaster.errors import NotFoundError, RepositoryError, ValidationError
from quizmaster.models import QuizRecord, SessionRecord

log = logging.getLogger(__name__)


class Repository(ABC):

    @abstractmethod
    def list_quizzes(self) -> List[Quiz]:
        pass

    @abstractmethod
    def get_quiz(self, quiz_id: str) -> Optional[Quiz]:
        pass

    @abstractmethod
    def create_quiz(self, quiz: Quiz) -> Quiz:
        pass

    @abstractmethod
    def update_quiz(self, quiz: Quiz) -> Quiz:
        pass

    @abstractmethod
    def delete_quiz(self, quiz_id: str) -> None:
        pass

    @abstractmethod
    def list_sessions(self) -> List[QuizSession]:
        pass

    @abstractmethod
    def get_session(self, session_id: str) -> Optional[QuizSession]:
        pass

    @abstractmethod
    def create_session(self, session: QuizSession) -> QuizSession:
        pass

    @abstractmethod
    def update_session(self, session: QuizSession) -> QuizSession:
        pass

    @abstractmethod
    def delete_session(self, session_id: str) -> None:
        pass


class MemoryRepository(Repository):
    """Process-local store keeping serialized copies of each document."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._quizzes: Dict[str, dict] = {}
        self._sessions: Dict[str, dict] = {}

    def list_quizzes(self):
        with self._lock:
            docs = [copy.deepcopy(d) for d in self._quizzes.values()]
        return [Quiz.from_dict(d) for d in docs]

    def get_quiz(self, quiz_id):
        with self._lock:
            doc = copy.deepcopy(self._quizzes.get(quiz_id))
        return Quiz.from_dict(doc) if doc else None

    def create_quiz(self, quiz):
        with self._lock:
            if quiz.id in self._quizzes:
                raise ValidationError(f'Quiz {quiz.id} already exists')
            self._quizzes[quiz.id] = quiz.to_dict()
            return Quiz.from_dict(copy.deepcopy(self._quizzes[quiz.id]))

    def update_quiz(self, quiz):
        with self._lock:
            if quiz.id not in self._quizzes:
                raise NotFoundError(f'Quiz {quiz.id} not found')
            self._quizzes[quiz.id] = quiz.to_dict()
            return Quiz.from_dict(copy.deepcopy(self._quizzes[quiz.id]))

    def delete_quiz(self, quiz_id):
        with self._lock:
            if self._quizzes.pop(quiz_id, None) is None:
                raise NotFoundError(f'Quiz {quiz_id} not found')

    def list_sessions(self):
        with self._lock:
            docs = [copy.deepcopy(d) for d in self._sessions.values()]
        return [QuizSession.from_dict(d) for d in docs]

    def get_session(self, session_id):
        with self._lock:
            doc = copy.deepcopy(self._sessions.get(session_id))
        return QuizSession.from_dict(doc) if doc else None

    def create_session(self, session):
        with self._lock:
            if session.id in self._sessions:
                raise ValidationError(f'Session {session.id} already exists')
            self._sessions[session.id] = session.to_dict()
            return QuizSession.from_dict(copy.deepcopy(self._sessions[session.id]))

    def update_session(self, session):
        with self._lock:
            if session.id not in self._sessions:
                raise NotFoundError(f'Session {session.id} not found')
            self._sessions[session.id] = session.to_dict()
            return QuizSession.from_dict(copy.deepcopy(self._sessions[session.id]))

    def delete_session(self, session_id):
        with self._lock:
            if self._sessions.pop(session_id, None) is None:
                raise NotFoundError(f'Session {session_id} not found')


class SqlRepository(Repository):
    """Documents stored through Flask-SQLAlchemy. Needs an application context."""

    def __init__(self, database=None) -> None:
        self.db = database or db

    def _commit(self, action: str) -> None:
        try:
            self.db.session.commit()
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            log.error('[repository] %s failed: %s', action, exc)
            raise RepositoryError(f'Could not {action}')

    def _query(self, action: str, fn):
        try:
            return fn()
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            log.error('[repository] %s failed: %s', action, exc)
            raise RepositoryError(f'Could not {action}')

    def list_quizzes(self):
        rows = self._query('list quizzes', lambda: QuizRecord.query.order_by(QuizRecord.created_at).all())
        return [Quiz.from_dict(r.to_dict()) for r in rows]

    def get_quiz(self, quiz_id):
        row = self._query('load quiz', lambda: self.db.session.get(QuizRecord, quiz_id))
        return Quiz.from_dict(row.to_dict()) if row else None

    def create_quiz(self, quiz):
        if self._query('load quiz', lambda: self.db.session.get(QuizRecord, quiz.id)) is not None:
            raise ValidationError(f'Quiz {quiz.id} already exists')
        row = QuizRecord(id=quiz.id, title=quiz.title, created_at=quiz.created_at,
                         payload=json.dumps(quiz.to_dict()))
        self.db.session.add(row)
        self._commit('create quiz')
        return Quiz.from_dict(row.to_dict())

    def update_quiz(self, quiz):
        row = self._query('load quiz', lambda: self.db.session.get(QuizRecord, quiz.id))
        if row is None:
            raise NotFoundError(f'Quiz {quiz.id} not found')
        row.title = quiz.title
        row.created_at = quiz.created_at
        row.payload = json.dumps(quiz.to_dict())
        self.db.session.add(row)
        self._commit('update quiz')
        return Quiz.from_dict(row.to_dict())

    def delete_quiz(self, quiz_id):
        row = self._query('load quiz', lambda: self.db.session.get(QuizRecord, quiz_id))
        if row is None:
            raise NotFoundError(f'Quiz {quiz_id} not found')
        self.db.session.delete(row)
        self._commit('delete quiz')

    def list_sessions(self):
        rows = self._query('list sessions', lambda: SessionRecord.query.order_by(SessionRecord.started_at).all())
        return [QuizSession.from_dict(r.to_dict()) for r in rows]

    def get_session(self, session_id):
        row = self._query('load session', lambda: self.db.session.get(SessionRecord, session_id))
        return QuizSession.from_dict(row.to_dict()) if row else None

    def create_session(self, session):
        if self._query('load session', lambda: self.db.session.get(SessionRecord, session.id)) is not None:
            raise ValidationError(f'Session {session.id} already exists')
        row = SessionRecord(id=session.id, quiz_id=session.quiz_id, status=session.status.value,
                            started_at=session.started_at, payload=json.dumps(session.to_dict()))
        self.db.session.add(row)
        self._commit('create session')
        return QuizSession.from_dict(row.to_dict())

    def update_session(self, session):
        row = self._query('load session', lambda: self.db.session.get(SessionRecord, session.id))
        if row is None:
            raise NotFoundError(f'Session {session.id} not found')
        row.quiz_id = session.quiz_id
        row.status = session.status.value
        row.started_at = session.started_at
        row.payload = json.dumps(session.to_dict())
        self.db.session.add(row)
        self._commit('update session')
        return QuizSession.from_dict(row.to_dict())

    def delete_session(self, session_id):
        row = self._query('load session', lambda: self.db.session.get(SessionRecord, session_id))
        if row is None:
            raise NotFoundError(f'Session {session_id} not found')
        self.db.session.delete(row)
        self._commit('delete session')
