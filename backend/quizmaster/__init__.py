from flask import Flask, current_app
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import random
import time
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(async_mode=None)


def quiz_service():
    """The QuizService bound to the current application."""
    return current_app.extensions['quizmaster']


def _session_room(session_id: str) -> str:
    return f"session:{session_id}"


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from quizmaster.api.errors import errors
    flask_app.register_blueprint(errors)

    from quizmaster.api.quizzes import quizzes
    flask_app.register_blueprint(quizzes, url_prefix='/api/quizzes')

    from quizmaster.api.sessions import sessions
    flask_app.register_blueprint(sessions, url_prefix='/api/sessions')

    from quizmaster.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    flask_app.extensions['quizmaster'] = _build_service(flask_app)

    _register_commands(flask_app)

    return flask_app


def _build_service(flask_app):
    from quizmaster.repository import SqlRepository
    from quizmaster.services.quiz.event_bus import EventBus, SqlEventTransport
    from quizmaster.services.quiz.scheduler import TimerRegistry
    from quizmaster.services.quiz.service import QuizService

    def _in_app_context(fn):
        with flask_app.app_context():
            fn()

    def _spawn(fn):
        # Countdowns are not spawned under test; tests expire timers explicitly.
        if flask_app.config.get('TESTING'):
            return None
        return socketio.start_background_task(_in_app_context, fn)

    def _state_update(session_id):
        socketio.emit('state_update', {'sessionId': session_id}, to=_session_room(session_id), namespace='/ws')

    seed = flask_app.config.get('SHUFFLE_SEED')
    timers = TimerRegistry(
        spawn=_spawn,
        sleep=socketio.sleep,
        grace=float(flask_app.config.get('TIMER_GRACE_SEC', 0)),
    )
    bus = EventBus(SqlEventTransport(), retention=float(flask_app.config.get('EVENT_RETENTION_SEC', 5)))
    return QuizService(
        SqlRepository(),
        bus,
        timers=timers,
        rng=random.Random(seed) if seed is not None else None,
        solo_participant_id=flask_app.config.get('SOLO_PARTICIPANT_ID', 'solo-player'),
        default_time_limit=flask_app.config.get('DEFAULT_TIME_LIMIT_SEC', 30),
        on_session_change=_state_update,
    )


def _register_commands(flask_app):

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates every table."""
        import quizmaster.models  # noqa: F401
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            print('Database has been reset!')

    @click.command('seed-demo')
    def seed_demo_command():
        """Creates a small demo quiz."""
        with flask_app.app_context():
            quiz = quiz_service().create_quiz({
                'title': 'Demo Quiz',
                'description': 'A few warm-up questions',
                'category': 'General',
                'questions': [
                    {'text': 'What is 2 + 2?', 'options': ['3', '4', '5'], 'correctAnswer': '4'},
                    {'text': 'Which planet is known as the Red Planet?',
                     'options': ['Venus', 'Mars', 'Jupiter'], 'correctAnswer': 'Mars', 'timeLimit': 20},
                    {'text': 'What is the capital of France?',
                     'options': ['Paris', 'Rome', 'Madrid', 'Berlin'], 'correctAnswer': 'Paris',
                     'shuffleOptions': True},
                ],
            })
            print(f'Seeded quiz {quiz.id} ({quiz.title})')

    @click.command('watch-session')
    @click.argument('session_id', required=False)
    @click.option('--interval', default=1.0, show_default=True, help='Seconds between polls.')
    @click.option('--once', is_flag=True, help='Poll a single time and exit.')
    def watch_session_command(session_id, interval, once):
        """Prints session events published by other processes."""
        from quizmaster.services.quiz.event_bus import EventBus, SqlEventTransport
        from quizmaster.services.quiz.service import (
            EVENT_ANSWER_SUBMIT, EVENT_PARTICIPANT_JOIN, EVENT_QUIZ_END,
            EVENT_QUIZ_START, EVENT_SESSION_UPDATE,
        )

        with flask_app.app_context():
            transport = SqlEventTransport()
            bus = EventBus(transport, retention=float(flask_app.config.get('EVENT_RETENTION_SEC', 5)))

            def _printer(event_name):
                def _print(payload):
                    if session_id and (payload or {}).get('sessionId') != session_id:
                        return
                    click.echo(f'{event_name} {payload}')
                return _print

            for name in (EVENT_QUIZ_START, EVENT_PARTICIPANT_JOIN, EVENT_ANSWER_SUBMIT,
                         EVENT_SESSION_UPDATE, EVENT_QUIZ_END):
                bus.on(name, _printer(name))

            click.echo(f"Watching {session_id or 'all sessions'}")
            try:
                while True:
                    transport.poll()
                    if once:
                        break
                    time.sleep(interval)
            except KeyboardInterrupt:
                pass
            finally:
                bus.close()

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(seed_demo_command)
    flask_app.cli.add_command(watch_session_command)
