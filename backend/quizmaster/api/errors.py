from flask import Blueprint, current_app, jsonify

from quizmaster.errors import QuizError, RepositoryError

errors = Blueprint('errors', __name__)


@errors.app_errorhandler(QuizError)
def handle_quiz_error(exc: QuizError):
    if isinstance(exc, RepositoryError):
        current_app.logger.error(f"[repository-error] {exc.message}")
    else:
        current_app.logger.info(f"[rejected] {type(exc).__name__}: {exc.message}")
    return jsonify({'error': exc.message}), exc.status_code
