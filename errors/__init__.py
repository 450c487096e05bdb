"""
Error handling for the SkyGuide chat service.

Usage:
    from errors import ProviderError, relay_failure_response

    try:
        ...
    except Exception as exc:
        status_code, body = relay_failure_response(exc)
"""
from .codes import ErrorCode
from .exceptions import (
    SkyGuideError,
    ProviderError,
    RunFailedError,
    RunTimeoutError,
    EmptyResponseError,
    ConversationNotFoundError,
    ConversationBusyError,
    ChatUnavailableError,
    NotAuthenticatedError,
)
from .response import GENERIC_FAILURE_MESSAGE, relay_failure_response

__all__ = [
    "ErrorCode",
    "SkyGuideError",
    "ProviderError",
    "RunFailedError",
    "RunTimeoutError",
    "EmptyResponseError",
    "ConversationNotFoundError",
    "ConversationBusyError",
    "ChatUnavailableError",
    "NotAuthenticatedError",
    "GENERIC_FAILURE_MESSAGE",
    "relay_failure_response",
]
