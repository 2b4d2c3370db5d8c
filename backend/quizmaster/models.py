from quizmaster import db
import json


class QuizRecord(db.Model):
    """Stored quiz document. ``payload`` holds the full JSON document."""
    __tablename__ = 'quiz'
    id = db.Column(db.String(64), primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.String(32), nullable=True, index=True)
    payload = db.Column(db.Text, nullable=False)

    def to_dict(self):
        return json.loads(self.payload)


class SessionRecord(db.Model):
    """Stored session document, replaced whole on every write."""
    __tablename__ = 'quiz_session'
    id = db.Column(db.String(64), primary_key=True)
    quiz_id = db.Column(db.String(64), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default='waiting')  # waiting, active, completed
    started_at = db.Column(db.String(32), nullable=True, index=True)
    payload = db.Column(db.Text, nullable=False)

    def to_dict(self):
        return json.loads(self.payload)


class BusEvent(db.Model):
    """Event bus record; rows older than the retention window are purged."""
    __tablename__ = 'bus_event'
    id = db.Column(db.Integer, primary_key=True)
    channel_key = db.Column(db.String(128), unique=True, nullable=False)
    event_name = db.Column(db.String(64), nullable=False, index=True)
    sender_id = db.Column(db.String(64), nullable=True)
    timestamp = db.Column(db.Float, nullable=False, index=True)
    payload = db.Column(db.Text, nullable=False)
