from datetime import datetime, timedelta, timezone

import pytest

from quizmaster.domain import Question, Quiz, SessionStatus
from quizmaster.errors import InvalidQuizError, SessionClosedError, UnknownQuestionError, ValidationError
from quizmaster.services.quiz import session_machine

T0 = datetime(2024, 1, 1, 9, 0, 0, tzinfo=timezone.utc)


def _quiz(*questions):
    if not questions:
        questions = (
            Question(id='q1', text='Pick B', options=('A', 'B', 'C'), correct_answer='B', time_limit=30),
            Question(id='q2', text='Pick Y', options=('X', 'Y'), correct_answer='Y', time_limit=10),
        )
    return Quiz(id='quiz-1', title='Letters', questions=tuple(questions))


def test_start_session_requires_questions():
    with pytest.raises(InvalidQuizError):
        session_machine.start_session(Quiz(id='empty', title='Empty'), False)


def test_start_session_is_waiting_with_no_cursor():
    session = session_machine.start_session(_quiz(), True, now=T0)
    assert session.status is SessionStatus.WAITING
    assert session.is_solo is True
    assert session.participants == ()
    assert session.results == ()
    assert session.current_question_index == -1
    assert session.started_at == '2024-01-01T09:00:00.000Z'


def test_solo_scenario_correct_answer_scores_133():
    quiz = _quiz()
    session = session_machine.start_session(quiz, True)
    session = session_machine.submit_answer(session, quiz, 'solo-player', 'q1', 'B', 10)
    result = session.result_for('solo-player', 'q1')
    assert result.is_correct is True
    assert result.score == 133
    assert session.status is SessionStatus.ACTIVE
    assert session.current_question_index == 0


def test_solo_scenario_wrong_answer_scores_zero():
    quiz = _quiz()
    session = session_machine.start_session(quiz, True)
    session = session_machine.submit_answer(session, quiz, 'solo-player', 'q1', 'A', 5)
    result = session.result_for('solo-player', 'q1')
    assert result.is_correct is False
    assert result.score == 0


def test_resubmission_replaces_the_previous_result():
    quiz = _quiz()
    session = session_machine.start_session(quiz, False)
    session = session_machine.submit_answer(session, quiz, 'p1', 'q1', 'A', 5)
    session = session_machine.submit_answer(session, quiz, 'p1', 'q2', 'Y', 1)
    session = session_machine.submit_answer(session, quiz, 'p1', 'q1', 'B', 0)
    matching = [r for r in session.results if r.key == ('p1', 'q1')]
    assert len(matching) == 1
    assert matching[0].answer == 'B'
    assert matching[0].score == 150
    # replaced in place
    assert [r.question_id for r in session.results] == ['q1', 'q2']


def test_result_keys_stay_unique_across_many_submissions():
    quiz = _quiz()
    session = session_machine.start_session(quiz, False)
    for participant in ('p1', 'p2'):
        for answer in ('A', 'B', 'C', 'B'):
            session = session_machine.submit_answer(session, quiz, participant, 'q1', answer, 3)
    keys = [r.key for r in session.results]
    assert len(keys) == len(set(keys)) == 2


def test_time_up_records_an_empty_incorrect_answer():
    quiz = _quiz()
    session = session_machine.start_session(quiz, True)
    session = session_machine.record_time_up(session, quiz, 'solo-player', 'q1')
    result = session.result_for('solo-player', 'q1')
    assert result.answer == ''
    assert result.is_correct is False
    assert result.score == 0
    assert result.time_spent == 30


def test_unknown_question_is_rejected_without_change():
    quiz = _quiz()
    session = session_machine.start_session(quiz, True)
    with pytest.raises(UnknownQuestionError):
        session_machine.submit_answer(session, quiz, 'solo-player', 'nope', 'B', 1)
    assert session.results == ()


def test_answer_must_be_a_string():
    quiz = _quiz()
    session = session_machine.start_session(quiz, True)
    with pytest.raises(ValidationError):
        session_machine.submit_answer(session, quiz, 'solo-player', 'q1', None, 1)


def test_end_session_twice_keeps_first_ended_at():
    session = session_machine.start_session(_quiz(), False, now=T0)
    ended = session_machine.end_session(session, now=T0 + timedelta(minutes=5))
    again = session_machine.end_session(ended, now=T0 + timedelta(minutes=9))
    assert ended.status is SessionStatus.COMPLETED
    assert again.ended_at == ended.ended_at == '2024-01-01T09:05:00.000Z'


def test_completed_session_rejects_answers_and_joins():
    quiz = _quiz()
    session = session_machine.end_session(session_machine.start_session(quiz, False))
    with pytest.raises(SessionClosedError):
        session_machine.submit_answer(session, quiz, 'p1', 'q1', 'B', 1)
    with pytest.raises(SessionClosedError):
        session_machine.join_room(session, 'Ada')


def test_join_room_adds_participant():
    session = session_machine.start_session(_quiz(), False, now=T0)
    session, ada = session_machine.join_room(session, '  Ada ', now=T0)
    session, bob = session_machine.join_room(session, 'Bob', now=T0)
    assert [p.name for p in session.participants] == ['Ada', 'Bob']
    assert ada.id != bob.id
    assert ada.joined_at == '2024-01-01T09:00:00.000Z'


def test_join_room_requires_a_name():
    session = session_machine.start_session(_quiz(), False)
    with pytest.raises(ValidationError):
        session_machine.join_room(session, '   ')


def test_join_room_with_known_id_returns_existing_participant():
    session = session_machine.start_session(_quiz(), False)
    session, ada = session_machine.join_room(session, 'Ada', participant_id='p-ada')
    again, same = session_machine.join_room(session, 'Ada', participant_id='p-ada')
    assert same == ada
    assert again is session


def test_question_index_tracks_distinct_questions_reached():
    quiz = _quiz()
    session = session_machine.start_session(quiz, False)
    session = session_machine.submit_answer(session, quiz, 'p1', 'q1', 'B', 1)
    session = session_machine.submit_answer(session, quiz, 'p2', 'q1', 'A', 1)
    assert session.current_question_index == 0
    session = session_machine.submit_answer(session, quiz, 'p1', 'q2', 'Y', 1)
    assert session.current_question_index == 1
