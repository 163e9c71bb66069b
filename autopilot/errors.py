"""
Error taxonomy shared by pipelines, clients and the API surface.

Client modules subclass ``ExternalServiceError`` with their own names
(``WordPressError``, ``KeywordResearchError``...) so callers can catch a
single provider or every external failure at once.
"""

from __future__ import annotations

from typing import Optional


class AutopilotError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(AutopilotError):
    """Malformed input to a pipeline entry point."""


class AuthorizationError(AutopilotError):
    """Caller lacks the capability required for the operation."""


class NotFoundError(AutopilotError):
    """A referenced account, content piece, run or queue item does not exist."""


class InvalidTransitionError(AutopilotError):
    """A status change that the record's lifecycle does not allow."""


class ExternalServiceError(AutopilotError):
    """A third-party API or the completion service failed."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class CompletionError(ExternalServiceError):
    """The language-model completion call failed or returned unusable output."""


class TokenRefreshError(ExternalServiceError):
    """The OAuth refresh exchange failed; the account is now disconnected."""


def describe_error(exc: BaseException) -> str:
    """Format an exception the way it is stored on a failed run."""
    return f"{type(exc).__name__}: {exc}"
