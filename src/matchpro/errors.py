from __future__ import annotations

import re

from pydantic import BaseModel

EMPTY_RESULT_HINT = (
    "This usually happens when the LLM provider balance is insufficient "
    "or the LLM service is unavailable."
)


class MatchError(Exception):
    """Base class for failures surfaced by the matching pipeline."""

    status_code: int = 500
    retryable: bool = True


class InputValidationError(MatchError):
    status_code = 400
    retryable = False


class ResumeNotFoundError(MatchError):
    status_code = 404
    retryable = False


class ScoringNotConfiguredError(MatchError):
    status_code = 500
    retryable = False


class UpstreamTimeoutError(MatchError):
    status_code = 408


class UpstreamRejectionError(MatchError):
    """The workflow service answered non-2xx or reported a failed run."""

    def __init__(self, message: str, *, http_status: int | None = None, body: str = ""):
        super().__init__(message)
        self.http_status = http_status
        self.body = body

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return 502 if self.http_status is not None else 500


class EmptyResultError(MatchError):
    status_code = 500
    retryable = False

    def __init__(self, message: str, *, hint: str = EMPTY_RESULT_HINT):
        super().__init__(message)
        self.hint = hint


class PersistenceError(MatchError):
    status_code = 500


class ConflictError(MatchError):
    """Unique-key violation on a first write; callers re-read instead of failing."""

    status_code = 409


class MatchCancelled(Exception):
    """Raised when the session's cancellation token fires. Not a failure."""


class FriendlyError(BaseModel):
    message: str
    is_retryable: bool = True


ALL_BATCHES_FAILED = FriendlyError(
    message="All batches failed. Check your network connection and try again.",
    is_retryable=True,
)

_GATEWAY_TIMEOUT = re.compile(r"\b504\b|gateway\s*time-?out|dify\s*http\s*504", re.IGNORECASE)


def describe_error(exc: BaseException | str) -> FriendlyError:
    message = str(exc)

    if isinstance(exc, InputValidationError):
        return FriendlyError(message="The request is invalid. Reload the page and try again.", is_retryable=False)
    if isinstance(exc, EmptyResultError):
        return FriendlyError(message=f"The analysis produced no usable output. {exc.hint}", is_retryable=True)
    if isinstance(exc, UpstreamTimeoutError) or _GATEWAY_TIMEOUT.search(message):
        return FriendlyError(message="The analysis timed out. Reload the page and try again.")
    if isinstance(exc, UpstreamRejectionError):
        return FriendlyError(message="The AI analysis service reported an error. Try again shortly.")
    if re.search(r"network|connection|timeout", message, re.IGNORECASE):
        return FriendlyError(message="A network error occurred. Check your connection and try again.")
    return FriendlyError(message="An error occurred during analysis. Reload the page and try again.")
