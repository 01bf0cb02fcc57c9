import asyncio
import logging
from enum import Enum
from typing import Tuple

import httpx

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    NETWORK_UNAVAILABLE = "network_unavailable"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


ERROR_MESSAGES = {
    ErrorKind.NETWORK_UNAVAILABLE: "Please check your internet connection and try again.",
    ErrorKind.TIMEOUT: "The search took too long. Please try again.",
    ErrorKind.UNKNOWN: "Something went wrong. Please try again later.",
}


class SearchServiceError(Exception):
    """Base exception for book search service failures"""
    pass


class NetworkError(SearchServiceError):
    """Transport failure or unexpected HTTP status from the search proxy"""

    def __init__(self, message: str, transport: bool = False):
        super().__init__(message)
        # True when no HTTP response was received at all
        self.transport = transport


class SearchTimeoutError(SearchServiceError):
    """Raised when the search proxy does not answer in time"""
    pass


class ProxyError(SearchServiceError):
    """Raised when the proxy answers with an error payload or rate limit"""
    pass


class RateLimitExceeded(ProxyError):
    """Raised when the proxy answers HTTP 429"""

    def __init__(self, retry_after: str = "60"):
        super().__init__(f"Rate limit exceeded. Please try again in {retry_after} seconds.")
        self.retry_after = retry_after


class DecodingError(SearchServiceError):
    """Raised when the proxy response cannot be parsed"""
    pass


_TIMEOUT_MARKERS = ("timeout", "timed out")
_NETWORK_MARKERS = ("network", "internet", "connection", "offline")


class ErrorClassifier:
    """Map raw search failures onto the user-facing error taxonomy.

    Exception types are inspected first; when the type says nothing specific
    the message text is searched for connectivity markers, then timeout markers.
    """

    @staticmethod
    def classify(error: BaseException) -> ErrorKind:
        if isinstance(error, (SearchTimeoutError, httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
            return ErrorKind.TIMEOUT
        if isinstance(error, NetworkError) and error.transport:
            return ErrorKind.NETWORK_UNAVAILABLE
        if isinstance(error, (httpx.NetworkError, ConnectionError)):
            return ErrorKind.NETWORK_UNAVAILABLE

        text = str(error).lower()
        if any(marker in text for marker in _NETWORK_MARKERS):
            return ErrorKind.NETWORK_UNAVAILABLE
        if any(marker in text for marker in _TIMEOUT_MARKERS):
            return ErrorKind.TIMEOUT
        return ErrorKind.UNKNOWN

    @staticmethod
    def message_for(kind: ErrorKind) -> str:
        return ERROR_MESSAGES[kind]

    @classmethod
    def describe(cls, error: BaseException) -> Tuple[str, ErrorKind]:
        """Return the (message, kind) pair presented for a raw failure."""
        kind = cls.classify(error)
        logger.debug(f"Classified {type(error).__name__}: {error} as {kind.value}")
        return cls.message_for(kind), kind
