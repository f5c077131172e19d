"""
errors.py: Error taxonomy shared by the adapter, session and listing workflow.

  PreconditionFailed  missing API key / image / listing, user-actionable
  NoActiveSession     follow-up edit without a started conversation
  MalformedResponse   text-tier output had no parseable JSON object
  ProviderError       any provider failure, tagged retryable or fatal
  SessionBusy         a second action while one is still in flight
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from google.genai import errors as genai_errors


class ErrorKind(str, Enum):
    RETRYABLE = "retryable"
    FATAL = "fatal"
    NO_ACTIVE_SESSION = "no_active_session"
    MALFORMED_RESPONSE = "malformed_response"


class ListerError(Exception):
    """Base class for every error raised by the lister package."""


class PreconditionFailed(ListerError):
    def __init__(self, message: str, action: Optional[str] = None) -> None:
        super().__init__(message)
        self.action = action


class NoActiveSession(ListerError):
    def __init__(self, message: str = "No active chat session. Please start a new edit.") -> None:
        super().__init__(message)


class MalformedResponse(ListerError):
    pass


class ProviderError(ListerError):
    def __init__(self, message: str, kind: ErrorKind = ErrorKind.FATAL) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.RETRYABLE


class SessionBusy(ListerError):
    def __init__(self, message: str = "Another request is still running. Wait for it to finish.") -> None:
        super().__init__(message)


class ProductNotFound(ListerError):
    def __init__(self, product_id: str) -> None:
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


class ArtifactNotFound(ListerError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Image not found: {path}")
        self.path = path


# ── Provider error classification ─────────────────────────────────────────────

RETRYABLE_STATUS_CODES = {429, 503}

RETRYABLE_MARKERS = (
    "429",
    "503",
    "high demand",
    "overloaded",
    "temporarily unavailable",
    "unavailable",
    "resource_exhausted",
    "rate limit",
)


def classify_error(exc: BaseException) -> ErrorKind:
    """
    Decide whether a provider failure is worth one retry on the fast tier.

    google-genai raises APIError subclasses carrying the HTTP status; other
    transports only give us the message, so fall back to the same markers the
    provider uses in its overload responses.
    """
    if isinstance(exc, NoActiveSession):
        return ErrorKind.NO_ACTIVE_SESSION
    if isinstance(exc, MalformedResponse):
        return ErrorKind.MALFORMED_RESPONSE
    if isinstance(exc, ProviderError):
        return exc.kind
    if isinstance(exc, genai_errors.APIError) and exc.code in RETRYABLE_STATUS_CODES:
        return ErrorKind.RETRYABLE

    message = str(exc).lower()
    if any(marker in message for marker in RETRYABLE_MARKERS):
        return ErrorKind.RETRYABLE
    return ErrorKind.FATAL


def error_message(exc: BaseException, default: str) -> str:
    """Human-readable message for a provider exception, never empty."""
    if isinstance(exc, genai_errors.APIError) and exc.message:
        return exc.message
    return str(exc) or default
