"""
Response builders for relay failures.

Every failure on the chat pathway collapses into one non-technical message
for the user. Provider bodies and stack traces stay in the logs.
"""
from datetime import datetime, timezone
from typing import Tuple

from sqlalchemy.exc import SQLAlchemyError

from .codes import ErrorCode
from .exceptions import (
    ChatUnavailableError,
    ConversationBusyError,
    ConversationNotFoundError,
    NotAuthenticatedError,
    ProviderError,
    RunTimeoutError,
    SkyGuideError,
)

GENERIC_FAILURE_MESSAGE = (
    "I'm having trouble processing your request right now. Please try again in a moment."
)
TIMEOUT_MESSAGE = "The request took too long to process. Please try a shorter or simpler question."
RATE_LIMIT_MESSAGE = "Our service is experiencing high demand. Please try again in a few moments."
CONVERSATION_MISSING_MESSAGE = "Something went wrong with this conversation. Please start a new one."
BUSY_MESSAGE = "Please wait for the current response to finish before sending another message."
SIGN_IN_MESSAGE = "Your session has expired. Please sign in again to continue."


def relay_failure_response(error: Exception) -> Tuple[int, dict]:
    """Map an error raised on the chat pathway to ``(status_code, body)``.

    Example:
        >>> relay_failure_response(ProviderError("Failed to create thread", status=429))
        (429, {"error": "PROVIDER_RATE_LIMITED",
               "details": "Failed to create thread",
               "timestamp": "...",
               "response": "Our service is experiencing high demand. ..."})
    """
    status_code = 500
    message = GENERIC_FAILURE_MESSAGE

    if isinstance(error, SkyGuideError):
        code = error.code.value
        details = error.message
    elif isinstance(error, SQLAlchemyError):
        code = ErrorCode.CONVERSATION_WRITE_FAILED.value
        details = "Failed to save conversation data"
    else:
        code = ErrorCode.INTERNAL_UNEXPECTED.value
        details = "Unexpected error"

    if isinstance(error, RunTimeoutError):
        message = TIMEOUT_MESSAGE
    elif isinstance(error, ProviderError) and error.status == 429:
        status_code = 429
        message = RATE_LIMIT_MESSAGE
    elif isinstance(error, ConversationNotFoundError):
        status_code = 404
        message = CONVERSATION_MISSING_MESSAGE
    elif isinstance(error, ConversationBusyError):
        status_code = 409
        message = BUSY_MESSAGE
    elif isinstance(error, NotAuthenticatedError):
        status_code = 401
        message = SIGN_IN_MESSAGE
    elif isinstance(error, ChatUnavailableError):
        status_code = 429
        message = error.details or error.message

    return status_code, {
        "error": code,
        "details": details,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "response": message,
    }
