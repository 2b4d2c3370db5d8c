import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///quizmaster.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Comma separated list of browser origins allowed for HTTP and Socket.IO
    CORS_ORIGINS = [
        o.strip() for o in os.environ.get(
            'CORS_ORIGINS', 'http://localhost:5173,http://127.0.0.1:5173'
        ).split(',') if o.strip()
    ]
    # Event bus records older than this are eligible for cleanup (seconds)
    EVENT_RETENTION_SEC = float(os.environ.get('EVENT_RETENTION_SEC', '5'))
    # Used for imported questions when the quiz has no default
    DEFAULT_TIME_LIMIT_SEC = int(os.environ.get('DEFAULT_TIME_LIMIT_SEC', '30'))
    # Participant id used for every solo session
    SOLO_PARTICIPANT_ID = os.environ.get('SOLO_PARTICIPANT_ID', 'solo-player')
    # Optional: fixed seed for question/option shuffling. Empty means system randomness.
    SHUFFLE_SEED = int(os.environ['SHUFFLE_SEED']) if os.environ.get('SHUFFLE_SEED') else None
    # Optional: extra seconds added to question timers to absorb client latency
    TIMER_GRACE_SEC = float(os.environ.get('TIMER_GRACE_SEC', '0'))
