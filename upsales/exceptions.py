"""
Errors raised by a compensation run.

    UpsalesError
    ├── KeyCRMError
    │   ├── KeyCRMConnectionError  transient, retried (network, timeout, 429)
    │   ├── KeyCRMAPIError         error status from KeyCRM, not retried
    │   └── KeyCRMDataError        page body of an unexpected shape
    ├── ConfigurationError         bad or missing settings
    ├── ReportGenerationError      workbook could not be written
    └── ValidationError            bad period or date input

Any of them aborts the run before a report is written; a failed fetch never
produces a partial report.
"""
from typing import Any, Optional


class UpsalesError(Exception):
    """Root of every error a run raises on purpose."""


class KeyCRMError(UpsalesError):
    """The order fetch failed."""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return f"{self.message}: {self.details}" if self.details else self.message


class KeyCRMConnectionError(KeyCRMError):
    """KeyCRM could not be reached in time. retry_after is in seconds."""

    def __init__(self, message: str, details: Optional[str] = None, retry_after: Optional[float] = None):
        super().__init__(message, details)
        self.retry_after = retry_after


class KeyCRMAPIError(KeyCRMError):

    def __init__(self, message: str, details: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, details)
        self.status_code = status_code

    @property
    def is_auth_error(self) -> bool:
        return self.status_code == 401


class KeyCRMDataError(KeyCRMError):
    """A page body the paginator cannot read; expected/got name the types."""

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        expected: Optional[str] = None,
        got: Optional[str] = None,
    ):
        super().__init__(message, details)
        self.expected = expected
        self.got = got


class ConfigurationError(UpsalesError):
    pass


class ReportGenerationError(UpsalesError):
    """Writing the workbook failed; cause is the underlying error."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        return f"{self.message}: {self.cause}" if self.cause is not None else self.message


class ValidationError(UpsalesError):
    """A run input (period name, custom dates) was rejected."""

    def __init__(self, field: str, message: str, value: Any = None):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message
        self.value = value

    def __str__(self) -> str:
        text = f"{self.field}: {self.message}"
        if self.value is not None:
            text += f" (got: {self.value!r})"
        return text
