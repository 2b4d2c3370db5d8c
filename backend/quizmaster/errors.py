"""Error taxonomy shared by the quiz core, the repository and the HTTP layer."""


class QuizError(Exception):
    """Base class for every error raised by the quiz core."""

    status_code = 400

    def __init__(self, message: str = ''):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(QuizError):
    """Malformed input to a core operation. Raised before any state changes."""

    status_code = 400


class InvalidQuizError(ValidationError):
    """The quiz cannot be played, e.g. it has no questions."""


class NotFoundError(QuizError):
    status_code = 404


class UnknownQuestionError(NotFoundError):
    """The question id does not belong to the session's quiz."""


class SessionClosedError(QuizError):
    """Attempt to mutate a completed session."""

    status_code = 409


class RepositoryError(QuizError):
    """The persistence boundary failed (database or storage error)."""

    status_code = 503
