from flask import Blueprint, Response, jsonify, request

from quizmaster import quiz_service
from quizmaster.errors import ValidationError

sessions = Blueprint('sessions', __name__)


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


@sessions.route('', methods=['GET'])
def list_sessions():
    quiz_id = request.args.get('quiz_id')
    items = quiz_service().list_sessions()
    if quiz_id:
        items = [s for s in items if s.quiz_id == quiz_id]
    return jsonify([s.to_dict() for s in items])


@sessions.route('', methods=['POST'])
def start_session():
    data = _json_body()
    quiz_id = data.get('quizId')
    if not quiz_id:
        raise ValidationError('quizId is required')
    is_solo = data.get('isSolo', False)
    if not isinstance(is_solo, bool):
        raise ValidationError('isSolo must be true or false')
    session = quiz_service().start_session(quiz_id, is_solo)
    return jsonify(session.to_dict()), 201


@sessions.route('/<string:session_id>', methods=['GET'])
def get_session(session_id):
    return jsonify(quiz_service().refresh_session(session_id).to_dict())


@sessions.route('/<string:session_id>/join', methods=['POST'])
def join_session(session_id):
    data = _json_body()
    participant = quiz_service().join_room(session_id, data.get('name') or '')
    return jsonify(participant.to_dict()), 201


@sessions.route('/<string:session_id>/answers', methods=['POST'])
def submit_answer(session_id):
    data = _json_body()
    service = quiz_service()
    if not data.get('questionId'):
        raise ValidationError('questionId is required')
    participant_id = data.get('participantId') or service.solo_participant_id
    session = service.submit_answer(
        session_id,
        participant_id,
        data.get('questionId'),
        data.get('answer'),
        data.get('timeSpent', 0),
    )
    result = session.result_for(participant_id, data.get('questionId'))
    return jsonify({'result': result.to_dict(), 'session': session.to_dict()}), 201


@sessions.route('/<string:session_id>/end', methods=['POST'])
def end_session(session_id):
    return jsonify(quiz_service().end_session(session_id).to_dict())


@sessions.route('/<string:session_id>/summary', methods=['GET'])
def session_summary(session_id):
    participant_id = request.args.get('participant_id')
    return jsonify(quiz_service().summary(session_id, participant_id).to_dict())


@sessions.route('/<string:session_id>/leaderboard', methods=['GET'])
def session_leaderboard(session_id):
    return jsonify([row.to_dict() for row in quiz_service().leaderboard(session_id)])


@sessions.route('/<string:session_id>/export.csv', methods=['GET'])
def export_csv(session_id):
    participant_id = request.args.get('participant_id')
    body = quiz_service().export_csv(session_id, participant_id)
    return Response(
        body,
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename=quiz-results-{session_id}.csv'},
    )


@sessions.route('/<string:session_id>/play/<string:participant_id>', methods=['GET'])
def play_state(session_id, participant_id):
    return jsonify(quiz_service().play_state(session_id, participant_id))


@sessions.route('/<string:session_id>/play/<string:participant_id>/advance', methods=['POST'])
def advance_play(session_id, participant_id):
    return jsonify(quiz_service().advance_play(session_id, participant_id))


@sessions.route('/<string:session_id>/timer', methods=['POST'])
def start_timer(session_id):
    data = _json_body()
    service = quiz_service()
    participant_id = data.get('participantId') or service.solo_participant_id
    timer = service.start_question_timer(session_id, participant_id, data.get('questionId'))
    return jsonify(timer), 201
