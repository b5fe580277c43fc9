"""Error taxonomy shared by scraping, market lookups and storage."""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Error kinds recorded against competitors and job executions."""
    BLOCKED = "BLOCKED"
    NO_DATA_FOUND = "NO_DATA_FOUND"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UPSTREAM_API_ERROR = "UPSTREAM_API_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class MarketIntelError(Exception):
    """Base error carrying an ErrorKind."""

    kind: ErrorKind = ErrorKind.UNKNOWN_ERROR

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class ScrapeError(MarketIntelError):
    """Competitor page could not be scraped."""
    pass


class BlockedError(ScrapeError):
    """Remote site refused automated access (HTTP 403 or bot challenge)."""
    kind = ErrorKind.BLOCKED


class NoDataFoundError(ScrapeError):
    """Page parsed but no usable vehicles were found."""
    kind = ErrorKind.NO_DATA_FOUND


class ScrapeConnectionError(ScrapeError):
    """Timeout, refused connection or other transport failure."""
    kind = ErrorKind.CONNECTION_ERROR


class ScrapeValidationError(ScrapeError):
    """Scraped data failed minimum completeness checks."""
    kind = ErrorKind.VALIDATION_ERROR

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        super().__init__(message)
        self.errors = errors or []


class ListingsAPIError(MarketIntelError):
    """Market listings API returned a non-success response."""
    kind = ErrorKind.UPSTREAM_API_ERROR

    def __init__(self, message: str, status_code: int = 0, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class StorageError(MarketIntelError):
    """Persistence failure."""
    kind = ErrorKind.STORAGE_ERROR


class NotFoundError(MarketIntelError):
    """Requested record does not exist."""
    pass


def classify_error(exc: BaseException) -> ErrorKind:
    """Map any exception to the ErrorKind recorded on competitor rows."""
    if isinstance(exc, MarketIntelError):
        return exc.kind
    return ErrorKind.UNKNOWN_ERROR
