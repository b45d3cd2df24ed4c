from typing import Optional


class GradebookError(Exception):
    """Base class for errors raised by the grading services."""


# ---------------------------
# Lookup / permission errors
# ---------------------------
class NotFoundError(GradebookError):
    pass


class SubmissionNotFoundError(NotFoundError):
    def __init__(self, submission_id):
        super().__init__(f"submission {submission_id} not found")
        self.submission_id = submission_id


class QuestionnaireNotFoundError(NotFoundError):
    def __init__(self, questionnaire_id):
        super().__init__(f"questionnaire {questionnaire_id} not found")
        self.questionnaire_id = questionnaire_id


class PermissionDeniedError(GradebookError):
    pass


class SubmissionValidationError(GradebookError):
    """The submission request itself is not acceptable (wrong state, bad answers)."""


# ---------------------------
# AI grading errors
# ---------------------------
class GradingError(GradebookError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientGradingError(GradingError):
    """Network failure, timeout or 5xx from the AI endpoint. Retried before surfacing."""


class PermanentGradingError(GradingError):
    """4xx from the AI endpoint or an unusable response. Never retried."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        raw_response: Optional[str] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.raw_response = raw_response


class UnparsableAIResponseError(PermanentGradingError):
    """The model answered, but not with the grading JSON we asked for."""

    def __init__(self, message: str, raw_response: str):
        super().__init__(message, raw_response=raw_response)


# ---------------------------
# Persistence errors
# ---------------------------
class PersistenceError(GradebookError):
    pass


class ConcurrentGradingError(PersistenceError):
    """The grading row changed between read and write."""
