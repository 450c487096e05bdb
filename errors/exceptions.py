"""
Exception hierarchy for the SkyGuide chat service.

All exceptions inherit from SkyGuideError and carry:
- code: ErrorCode for categorization
- message: human-readable message
- details: optional additional context
- recoverable: whether the user can retry or fix the issue
- context: key-value pairs for debugging
"""
from typing import Any, Optional

from .codes import ErrorCode


class SkyGuideError(Exception):
    """Base exception for all SkyGuide errors."""

    code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED
    recoverable: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        code: Optional[ErrorCode] = None,
        recoverable: Optional[bool] = None,
        **context: Any,
    ):
        self.message = message
        self.details = details
        self.context = context if context else None

        if code is not None:
            self.code = code
        if recoverable is not None:
            self.recoverable = recoverable

        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message

    def to_dict(self) -> dict:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
            "context": self.context,
        }


class ProviderError(SkyGuideError):
    """Non-2xx response or transport failure from the assistant provider.

    ``status`` is None when no HTTP response was received at all.
    ``body`` holds the raw provider response text; it is meant for logs only.
    """

    code = ErrorCode.PROVIDER_REQUEST_FAILED
    recoverable = True

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Optional[str] = None,
        **context: Any,
    ):
        if status is None:
            code = ErrorCode.PROVIDER_NETWORK_ERROR
        elif status == 429:
            code = ErrorCode.PROVIDER_RATE_LIMITED
        else:
            code = ErrorCode.PROVIDER_REQUEST_FAILED

        self.status = status
        self.body = body
        super().__init__(message, code=code, status=status, **context)


class RunFailedError(SkyGuideError):
    """An assistant run ended in a non-completed terminal state."""

    code = ErrorCode.PROVIDER_RUN_FAILED

    def __init__(self, message: str, status: Optional[str] = None, details: Optional[str] = None, **context: Any):
        self.status = status
        super().__init__(message, details, run_status=status, **context)


class RunTimeoutError(SkyGuideError):
    """Polling a run exceeded its time budget."""

    code = ErrorCode.PROVIDER_RUN_TIMEOUT
    recoverable = True


class EmptyResponseError(SkyGuideError):
    """A completed run produced no assistant text."""

    code = ErrorCode.PROVIDER_EMPTY_RESPONSE
    recoverable = True


class ConversationNotFoundError(SkyGuideError):
    """Conversation does not exist or belongs to another user."""

    code = ErrorCode.CONVERSATION_NOT_FOUND
    recoverable = True


class ConversationBusyError(SkyGuideError):
    """A send is already in flight for this conversation."""

    code = ErrorCode.CONVERSATION_BUSY
    recoverable = True


class ChatUnavailableError(SkyGuideError):
    """The user may not send chat messages right now."""

    code = ErrorCode.ACCESS_TRIAL_EXHAUSTED
    recoverable = True


class NotAuthenticatedError(SkyGuideError):
    """Missing, expired or invalid bearer token on the chat pathway."""

    code = ErrorCode.ACCESS_UNAUTHENTICATED
    recoverable = True
