import os
import sys
import pytest

# Ensure the backend root (containing the `quizmaster` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from quizmaster import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = ['http://localhost:5173']
    EVENT_RETENTION_SEC = 5.0
    DEFAULT_TIME_LIMIT_SEC = 30
    SOLO_PARTICIPANT_ID = 'solo-player'
    SHUFFLE_SEED = 1234
    TIMER_GRACE_SEC = 0.0


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import quizmaster.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def service(flask_app):
    return flask_app.extensions['quizmaster']


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')


def quiz_payload(**overrides):
    payload = {
        'title': 'Capitals',
        'description': 'Warm-up round',
        'category': 'Geography',
        'questions': [
            {'id': 'q1', 'text': 'Pick B', 'options': ['A', 'B', 'C'], 'correctAnswer': 'B', 'timeLimit': 30},
        ],
    }
    payload.update(overrides)
    return payload
