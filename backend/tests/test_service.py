import random

import pytest

from quizmaster.domain import SessionStatus
from quizmaster.errors import (
    InvalidQuizError,
    NotFoundError,
    RepositoryError,
    SessionClosedError,
    ValidationError,
)
from quizmaster.repository import MemoryRepository
from quizmaster.services.quiz.event_bus import EventBus, MemoryTransport
from quizmaster.services.quiz.scheduler import TimerRegistry
from quizmaster.services.quiz.service import QuizService

from conftest import quiz_payload


class FlakyRepository(MemoryRepository):
    fail_session_writes = False

    def update_session(self, session):
        if self.fail_session_writes:
            raise RepositoryError('Could not update session')
        return super().update_session(session)


@pytest.fixture()
def transport():
    return MemoryTransport()


@pytest.fixture()
def changes():
    return []


@pytest.fixture()
def quiz_service(transport, changes):
    return QuizService(
        FlakyRepository(),
        EventBus(transport, sender_id='service'),
        timers=TimerRegistry(spawn=lambda fn: None),
        rng=random.Random(7),
        on_session_change=changes.append,
    )


def test_create_quiz_fills_ids_and_defaults(quiz_service):
    quiz = quiz_service.create_quiz({
        'title': 'Defaults',
        'category': 'Science',
        'settings': {'defaultTimeLimit': 12},
        'questions': [{'text': 'Pick Y', 'options': ['X', 'Y'], 'correctAnswer': 'Y'}],
    })
    assert quiz.id
    assert quiz.created_at.endswith('Z')
    assert quiz.questions[0].id
    assert quiz.questions[0].time_limit == 12
    assert quiz.questions[0].category == 'Science'
    assert quiz_service.get_quiz(quiz.id) == quiz


def test_create_quiz_requires_title(quiz_service):
    with pytest.raises(ValidationError):
        quiz_service.create_quiz({'title': '', 'questions': []})
    assert quiz_service.list_quizzes() == []


def test_update_quiz_keeps_identity(quiz_service):
    quiz = quiz_service.create_quiz(quiz_payload())
    updated = quiz_service.update_quiz(quiz.id, quiz_payload(title='Renamed', id='ignored'))
    assert updated.id == quiz.id
    assert updated.created_at == quiz.created_at
    assert updated.title == 'Renamed'


def test_delete_quiz(quiz_service):
    quiz = quiz_service.create_quiz(quiz_payload())
    quiz_service.delete_quiz(quiz.id)
    with pytest.raises(NotFoundError):
        quiz_service.get_quiz(quiz.id)


def test_import_rejects_whole_batch_on_first_invalid_item(quiz_service):
    quiz = quiz_service.create_quiz(quiz_payload())
    with pytest.raises(ValidationError) as excinfo:
        quiz_service.import_questions(quiz.id, [
            {'text': 'Fine', 'options': ['1', '2'], 'correctAnswer': '2'},
            {'text': 'Q1'},
        ])
    assert 'item 2' in excinfo.value.message
    assert quiz_service.get_quiz(quiz.id).questions == quiz.questions


def test_import_rejects_non_arrays(quiz_service):
    quiz = quiz_service.create_quiz(quiz_payload())
    with pytest.raises(ValidationError) as excinfo:
        quiz_service.import_questions(quiz.id, {'text': 'Q1'})
    assert excinfo.value.message == 'Imported data must be an array'


def test_import_appends_with_quiz_defaults(quiz_service):
    quiz = quiz_service.create_quiz(quiz_payload(settings={'defaultTimeLimit': 45}))
    updated = quiz_service.import_questions(quiz.id, [
        {'text': 'Pick 2', 'options': ['1', '2'], 'correctAnswer': '2'},
    ])
    assert len(updated.questions) == 2
    added = updated.questions[-1]
    assert added.time_limit == 45
    assert added.category == 'Geography'


def test_start_session_needs_questions(quiz_service):
    quiz = quiz_service.create_quiz(quiz_payload(questions=[]))
    with pytest.raises(InvalidQuizError):
        quiz_service.start_session(quiz.id, True)


def test_solo_flow_scores_and_summarizes(quiz_service):
    quiz = quiz_service.create_quiz(quiz_payload())
    session = quiz_service.start_session(quiz.id, True)
    session = quiz_service.submit_answer(session.id, 'solo-player', 'q1', 'B', 10)
    assert session.status is SessionStatus.ACTIVE
    assert session.result_for('solo-player', 'q1').score == 133
    summary = quiz_service.summary(session.id)
    assert summary.total_score == 133
    assert summary.accuracy == 100
    assert quiz_service.export_csv(session.id).splitlines()[1] == 'Pick B,B,B,Correct,10s,133'


def test_resubmitting_keeps_one_result(quiz_service):
    quiz = quiz_service.create_quiz(quiz_payload())
    session = quiz_service.start_session(quiz.id, True)
    quiz_service.submit_answer(session.id, 'solo-player', 'q1', 'A', 5)
    session = quiz_service.submit_answer(session.id, 'solo-player', 'q1', 'B', 0)
    assert len(session.results) == 1
    assert session.results[0].answer == 'B'


def test_end_session_twice_is_harmless(quiz_service, changes):
    quiz = quiz_service.create_quiz(quiz_payload())
    session = quiz_service.start_session(quiz.id, False)
    ended = quiz_service.end_session(session.id)
    again = quiz_service.end_session(session.id)
    assert again.ended_at == ended.ended_at
    # start + first end only
    assert changes == [session.id, session.id]
    with pytest.raises(SessionClosedError):
        quiz_service.submit_answer(session.id, 'p1', 'q1', 'B', 1)


def test_multiplayer_leaderboard(quiz_service):
    quiz = quiz_service.create_quiz(quiz_payload())
    session = quiz_service.start_session(quiz.id, False)
    first = quiz_service.join_room(session.id, 'First')
    second = quiz_service.join_room(session.id, 'Second')
    quiz_service.submit_answer(session.id, first.id, 'q1', 'A', 2)
    quiz_service.submit_answer(session.id, second.id, 'q1', 'B', 2)
    rows = quiz_service.leaderboard(session.id)
    assert [r.participant_id for r in rows] == [second.id, first.id]


def test_failed_persist_keeps_last_confirmed_state(quiz_service):
    quiz = quiz_service.create_quiz(quiz_payload())
    session = quiz_service.start_session(quiz.id, True)
    quiz_service.repository.fail_session_writes = True
    with pytest.raises(RepositoryError):
        quiz_service.submit_answer(session.id, 'solo-player', 'q1', 'B', 1)
    assert quiz_service.get_session(session.id).results == ()
    quiz_service.repository.fail_session_writes = False
    retried = quiz_service.submit_answer(session.id, 'solo-player', 'q1', 'B', 1)
    assert len(retried.results) == 1


def test_writes_are_announced_to_other_observers(quiz_service, transport):
    observer = EventBus(transport, sender_id='observer')
    events = []
    for name in ('quiz:start', 'participant:join', 'answer:submit', 'quiz:end'):
        observer.on(name, lambda payload, name=name: events.append(name))
    quiz = quiz_service.create_quiz(quiz_payload())
    session = quiz_service.start_session(quiz.id, False)
    participant = quiz_service.join_room(session.id, 'Ada')
    quiz_service.submit_answer(session.id, participant.id, 'q1', 'B', 3)
    quiz_service.end_session(session.id)
    assert events == ['quiz:start', 'participant:join', 'answer:submit', 'quiz:end']


def test_refresh_picks_up_writes_from_another_service(transport):
    repository = MemoryRepository()
    writer = QuizService(repository, EventBus(transport, sender_id='writer'))
    reader = QuizService(repository, EventBus(transport, sender_id='reader'))
    quiz = writer.create_quiz(quiz_payload())
    session = writer.start_session(quiz.id, True)
    assert reader.get_session(session.id).results == ()

    reader.bus.on('session:update', lambda payload: reader.refresh_session(payload['sessionId']))
    writer.submit_answer(session.id, 'solo-player', 'q1', 'B', 0)
    assert reader.get_session(session.id).results[0].score == 150


def test_time_up_records_empty_answer_once(quiz_service):
    quiz = quiz_service.create_quiz(quiz_payload())
    session = quiz_service.start_session(quiz.id, True)
    timer = quiz_service.start_question_timer(session.id, 'solo-player')
    assert timer['questionId'] == 'q1'
    assert timer['duration'] == 30
    assert quiz_service.timers.expire((session.id, 'solo-player', 'q1')) is True
    result = quiz_service.get_session(session.id).result_for('solo-player', 'q1')
    assert (result.answer, result.is_correct, result.score, result.time_spent) == ('', False, 0, 30)


def test_answer_cancels_the_running_timer(quiz_service):
    quiz = quiz_service.create_quiz(quiz_payload())
    session = quiz_service.start_session(quiz.id, True)
    quiz_service.start_question_timer(session.id, 'solo-player', 'q1')
    quiz_service.submit_answer(session.id, 'solo-player', 'q1', 'B', 4)
    assert quiz_service.timers.expire((session.id, 'solo-player', 'q1')) is False
    assert quiz_service.get_session(session.id).result_for('solo-player', 'q1').answer == 'B'


def test_time_up_does_not_overwrite_an_answer(quiz_service):
    quiz = quiz_service.create_quiz(quiz_payload())
    session = quiz_service.start_session(quiz.id, True)
    quiz_service.submit_answer(session.id, 'solo-player', 'q1', 'B', 4)
    quiz_service.record_time_up(session.id, 'solo-player', 'q1')
    assert quiz_service.get_session(session.id).result_for('solo-player', 'q1').answer == 'B'


def test_time_up_after_end_is_ignored(quiz_service):
    quiz = quiz_service.create_quiz(quiz_payload())
    session = quiz_service.start_session(quiz.id, False)
    quiz_service.start_question_timer(session.id, 'p1', 'q1')
    timer = quiz_service.timers.get((session.id, 'p1', 'q1'))
    quiz_service.end_session(session.id)
    assert timer.fire() is False
    assert quiz_service.get_session(session.id).results == ()


def test_play_view_hides_the_answer_and_ends_solo_sessions(quiz_service):
    quiz = quiz_service.create_quiz(quiz_payload(questions=[
        {'id': 'q1', 'text': 'Pick B', 'options': ['A', 'B'], 'correctAnswer': 'B', 'shuffleOptions': True},
        {'id': 'q2', 'text': 'Pick Y', 'options': ['X', 'Y'], 'correctAnswer': 'Y'},
    ]))
    session = quiz_service.start_session(quiz.id, True)
    view = quiz_service.play_state(session.id, 'solo-player')
    assert view['position'] == 0
    assert view['total'] == 2
    assert 'correctAnswer' not in view['question']
    assert sorted(view['question']['options']) == ['A', 'B']
    # option order is stable across re-renders
    assert quiz_service.play_state(session.id, 'solo-player') == view

    quiz_service.advance_play(session.id, 'solo-player')
    final = quiz_service.advance_play(session.id, 'solo-player')
    assert final['finished'] is True
    assert final['status'] == 'completed'
    assert quiz_service.get_session(session.id).is_completed


def test_shuffled_question_order_is_shared_within_a_session(quiz_service):
    questions = [
        {'id': f'q{i}', 'text': f'Pick {i}', 'options': ['yes', 'no'], 'correctAnswer': 'yes'}
        for i in range(8)
    ]
    quiz = quiz_service.create_quiz(quiz_payload(questions=questions, settings={'shuffleQuestions': True}))
    session = quiz_service.start_session(quiz.id, False)

    def walk(participant_id):
        order = []
        view = quiz_service.play_state(session.id, participant_id)
        while not view['finished']:
            order.append(view['question']['id'])
            view = quiz_service.advance_play(session.id, participant_id)
        return order

    first, second = walk('p1'), walk('p2')
    assert first == second
    assert sorted(first) == sorted(q['id'] for q in questions)


def test_rejected_answer_keeps_the_timer_running(quiz_service):
    quiz = quiz_service.create_quiz(quiz_payload())
    session = quiz_service.start_session(quiz.id, True)
    quiz_service.start_question_timer(session.id, 'solo-player', 'q1')
    with pytest.raises(ValidationError):
        quiz_service.submit_answer(session.id, 'solo-player', 'q1', None, 3)
    assert quiz_service.timers.expire((session.id, 'solo-player', 'q1')) is True
    result = quiz_service.get_session(session.id).result_for('solo-player', 'q1')
    assert (result.answer, result.score) == ('', 0)


def test_failed_persist_keeps_the_timer_running(quiz_service):
    quiz = quiz_service.create_quiz(quiz_payload())
    session = quiz_service.start_session(quiz.id, True)
    quiz_service.start_question_timer(session.id, 'solo-player', 'q1')
    quiz_service.repository.fail_session_writes = True
    with pytest.raises(RepositoryError):
        quiz_service.submit_answer(session.id, 'solo-player', 'q1', 'B', 3)
    quiz_service.repository.fail_session_writes = False
    assert quiz_service.timers.expire((session.id, 'solo-player', 'q1')) is True
    result = quiz_service.get_session(session.id).result_for('solo-player', 'q1')
    assert (result.answer, result.is_correct, result.time_spent) == ('', False, 30)


def test_unchanged_writes_are_not_announced(quiz_service, transport):
    observer = EventBus(transport, sender_id='observer')
    events = []
    for name in ('session:update', 'quiz:end'):
        observer.on(name, lambda payload, name=name: events.append(name))
    quiz = quiz_service.create_quiz(quiz_payload())
    session = quiz_service.start_session(quiz.id, True)
    quiz_service.submit_answer(session.id, 'solo-player', 'q1', 'B', 4)
    del events[:]

    quiz_service.record_time_up(session.id, 'solo-player', 'q1')
    assert events == []
    quiz_service.end_session(session.id)
    quiz_service.end_session(session.id)
    assert events == ['quiz:end']


def test_ending_a_session_drops_its_play_state(quiz_service):
    quiz = quiz_service.create_quiz(quiz_payload())
    session = quiz_service.start_session(quiz.id, False)
    other = quiz_service.start_session(quiz.id, False)
    quiz_service.play_state(session.id, 'p1')
    quiz_service.play_state(other.id, 'p1')

    quiz_service.end_session(session.id)

    assert session.id not in quiz_service._question_orders
    assert (session.id, 'p1') not in quiz_service._cursors
    assert (other.id, 'p1') in quiz_service._cursors
    view = quiz_service.play_state(session.id, 'p1')
    assert view['finished'] is True
    assert view['status'] == 'completed'
    assert (session.id, 'p1') not in quiz_service._cursors
