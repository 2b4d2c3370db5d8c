from flask import Blueprint, jsonify, request, current_app

from quizmaster import quiz_service

quizzes = Blueprint('quizzes', __name__)


@quizzes.route('', methods=['GET'])
def list_quizzes():
    return jsonify([q.to_dict() for q in quiz_service().list_quizzes()])


@quizzes.route('', methods=['POST'])
def create_quiz():
    data = request.get_json(silent=True) or {}
    quiz = quiz_service().create_quiz(data)
    current_app.logger.info(f"[api] created quiz={quiz.id} title={quiz.title!r}")
    return jsonify(quiz.to_dict()), 201


@quizzes.route('/<string:quiz_id>', methods=['GET'])
def get_quiz(quiz_id):
    return jsonify(quiz_service().get_quiz(quiz_id).to_dict())


@quizzes.route('/<string:quiz_id>', methods=['PUT'])
def update_quiz(quiz_id):
    data = request.get_json(silent=True) or {}
    return jsonify(quiz_service().update_quiz(quiz_id, data).to_dict())


@quizzes.route('/<string:quiz_id>', methods=['DELETE'])
def delete_quiz(quiz_id):
    quiz_service().delete_quiz(quiz_id)
    return jsonify({'message': 'Quiz deleted'})


@quizzes.route('/<string:quiz_id>/import', methods=['POST'])
def import_questions(quiz_id):
    # Accept either a bare array or {"questions": [...]}
    data = request.get_json(silent=True)
    if isinstance(data, dict) and 'questions' in data:
        data = data['questions']
    quiz = quiz_service().import_questions(quiz_id, data)
    return jsonify(quiz.to_dict())
