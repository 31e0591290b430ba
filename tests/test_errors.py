"""Tests for quote error codes, statuses and warnings."""

import pytest

from investment_tracker.services.errors import (
    GENERIC_STALE_WARNING,
    QuoteError,
    stale_warning_for_code,
    status_for_code,
)


@pytest.mark.parametrize(
    "code, status",
    [("THROTTLED", 429), ("INVALID_SYMBOL", 422), ("HTTP_ERROR", 502), ("RETRY_EXHAUSTED", 502), ("UNKNOWN", 502)],
)
def test_status_for_code(code, status) -> None:
    assert status_for_code(code) == status


def test_stale_warning_for_code() -> None:
    assert "rate limit" in stale_warning_for_code("THROTTLED").lower()
    assert stale_warning_for_code("NETWORK_ERROR") == GENERIC_STALE_WARNING
    assert stale_warning_for_code(None) == stale_warning_for_code("UNKNOWN")


def test_unknown_code_normalized() -> None:
    err = QuoteError("boom", code="WHATEVER")
    assert err.code == "UNKNOWN"
    assert err.status == 502
    assert err.message == "boom"


def test_parse_and_unknown_have_their_own_warnings() -> None:
    assert stale_warning_for_code("PARSE_ERROR") == "Invalid quote from the provider. Keeping the last saved price."
    assert stale_warning_for_code("UNKNOWN") == "Unexpected error. Keeping the last saved price."
    assert stale_warning_for_code("HTTP_ERROR") == GENERIC_STALE_WARNING
