"""Error taxonomy for oracle calls and the diagnostics ledger."""

from typing import Optional


class OracleError(Exception):
    """Base class for failures that must surface to the caller."""

    status_code = 500
    code = "oracle_error"

    def __init__(self, message: str, *, detail: Optional[str] = None):
        super().__init__(message)
        self.detail = detail


class ProviderError(OracleError):
    """Raised when a model is unknown or its API key is not configured."""

    status_code = 400
    code = "provider_error"


class UpstreamError(OracleError):
    """Raised on non-2xx provider responses and transport failures."""

    status_code = 502
    code = "upstream_error"

    def __init__(self, message: str, *, upstream_status: Optional[int] = None, detail: Optional[str] = None):
        super().__init__(message, detail=detail)
        self.upstream_status = upstream_status


class EmptyResponseError(OracleError):
    """Raised when a provider answers without any content."""

    status_code = 502
    code = "empty_response"


class MalformedResponseError(OracleError):
    """Raised when model output holds no parseable JSON of the expected shape."""

    status_code = 502
    code = "malformed_response"


class LedgerError(Exception):
    """Base class for answer ledger failures."""

    status_code = 400
    code = "ledger_error"


class AnswerNotFoundError(LedgerError):
    status_code = 404
    code = "answer_not_found"


class AlreadyContestedError(LedgerError):
    status_code = 409
    code = "already_contested"


class InvalidQuestionError(ValueError):
    """Raised when a grade request lacks the fields its question type needs."""

    status_code = 422
    code = "invalid_question"
