class QuizError(Exception):
    """Base class for errors raised by the quiz engine."""

    status_code = 400


class IncompleteSubmissionError(QuizError):
    """Raised when an answer is submitted with no option selected."""


class AlreadyAnsweredError(QuizError):
    status_code = 409


class MemorizeModeError(QuizError):
    """Raised when an answer is submitted while in memorize mode."""


class NoActiveSessionError(QuizError):
    status_code = 404


class PersistenceUnavailable(Exception):
    """Raised by a storage tier that cannot serve the request."""
