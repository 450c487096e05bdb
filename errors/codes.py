"""
Error codes for the SkyGuide chat service.

Categories:
- PROVIDER_*: assistant provider (threads, runs, messages) failures
- CONVERSATION_*: conversation bookkeeping errors
- ACCESS_*: chat availability and authentication
- INTERNAL_*: unexpected failures
"""
from enum import Enum


class ErrorCode(str, Enum):
    """Standardized error codes."""

    PROVIDER_REQUEST_FAILED = "PROVIDER_REQUEST_FAILED"
    PROVIDER_RATE_LIMITED = "PROVIDER_RATE_LIMITED"
    PROVIDER_NETWORK_ERROR = "PROVIDER_NETWORK_ERROR"
    PROVIDER_RUN_FAILED = "PROVIDER_RUN_FAILED"
    PROVIDER_RUN_TIMEOUT = "PROVIDER_RUN_TIMEOUT"
    PROVIDER_EMPTY_RESPONSE = "PROVIDER_EMPTY_RESPONSE"

    CONVERSATION_NOT_FOUND = "CONVERSATION_NOT_FOUND"
    CONVERSATION_BUSY = "CONVERSATION_BUSY"
    CONVERSATION_WRITE_FAILED = "CONVERSATION_WRITE_FAILED"

    ACCESS_TRIAL_EXHAUSTED = "ACCESS_TRIAL_EXHAUSTED"
    ACCESS_SUBSCRIPTION_INACTIVE = "ACCESS_SUBSCRIPTION_INACTIVE"
    ACCESS_UNAUTHENTICATED = "ACCESS_UNAUTHENTICATED"

    INTERNAL_UNEXPECTED = "INTERNAL_UNEXPECTED"
