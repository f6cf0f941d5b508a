"""
Standardised error handling for FetchTube.
"""

from fetchtube.core.constants import ErrorCode, RETRYABLE_ERRORS, CONTENT_ERRORS


class JobError(Exception):
    """Raised when a job or request encounters a known error condition."""

    def __init__(self, code: str, message: str, retryable: bool | None = None):
        self.code = code
        self.message = message
        # auto-detect retryable from code if not explicitly set
        self.retryable = retryable if retryable is not None else is_retryable(code)
        super().__init__(f"[{code}] {message}")


class NotFoundError(JobError):
    """Unknown job id or missing artifact. Reportable, never fatal."""

    def __init__(self, message: str, reason: str | None = None,
                 code: str = ErrorCode.NOT_FOUND, should_redownload: bool = False):
        super().__init__(code, message, retryable=False)
        self.reason = reason or message
        self.should_redownload = should_redownload


def is_retryable(code: str) -> bool:
    return code in RETRYABLE_ERRORS


def is_content_error(code: str) -> bool:
    return code in CONTENT_ERRORS
