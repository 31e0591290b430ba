"""Typed quote-provider failures and their user-facing fallback texts."""

from __future__ import annotations

from typing import Optional

THROTTLED = "THROTTLED"
INVALID_SYMBOL = "INVALID_SYMBOL"
HTTP_ERROR = "HTTP_ERROR"
NETWORK_ERROR = "NETWORK_ERROR"
PARSE_ERROR = "PARSE_ERROR"
RETRY_EXHAUSTED = "RETRY_EXHAUSTED"
UNKNOWN = "UNKNOWN"

ERROR_CODES = (
    THROTTLED,
    INVALID_SYMBOL,
    HTTP_ERROR,
    NETWORK_ERROR,
    PARSE_ERROR,
    RETRY_EXHAUSTED,
    UNKNOWN,
)

# HTTP-style status per code; anything not listed maps to 502 (bad gateway)
ERROR_STATUSES = {
    THROTTLED: 429,
    INVALID_SYMBOL: 422,
}
DEFAULT_ERROR_STATUS = 502

GENERIC_STALE_WARNING = "Could not update the quote. Keeping the last saved price."
STALE_WARNINGS = {
    THROTTLED: "Rate limit reached. Keeping the last saved price.",
    INVALID_SYMBOL: "Invalid ticker. Keeping the last saved price.",
    PARSE_ERROR: "Invalid quote from the provider. Keeping the last saved price.",
    UNKNOWN: "Unexpected error. Keeping the last saved price.",
}


def status_for_code(code: str) -> int:
    """Return the HTTP-style status for an error code (502 when unmapped)."""
    return ERROR_STATUSES.get(code, DEFAULT_ERROR_STATUS)


def stale_warning_for_code(code: Optional[str]) -> str:
    """Return the short text shown next to a price that could not be refreshed."""
    return STALE_WARNINGS.get(code or UNKNOWN, GENERIC_STALE_WARNING)


class QuoteError(Exception):
    """
    A quote fetch failed.

    Attributes:
        message: Raw, short description of the failure.
        code: One of ERROR_CODES.
        status: HTTP-style status (429 throttled, 422 invalid symbol, else 502
            or the upstream status when one is known).
        retryable: True when the failure was transient.
        details: Optional provider payload excerpt for logs.
    """

    def __init__(
        self,
        message: str,
        code: str = UNKNOWN,
        status: Optional[int] = None,
        retryable: bool = False,
        details: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code if code in ERROR_CODES else UNKNOWN
        self.status = status if status is not None else status_for_code(self.code)
        self.retryable = retryable
        self.details = details

    @property
    def stale_warning(self) -> str:
        return stale_warning_for_code(self.code)

    def __repr__(self) -> str:
        return f"QuoteError({self.message!r}, code={self.code!r}, status={self.status})"
