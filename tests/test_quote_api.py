"""Tests for the quote endpoint handler and the endpoint client."""

import pytest
import requests

from conftest import FakeSession, make_response
from investment_tracker.services.alpha_vantage import AlphaVantageClient
from investment_tracker.services.errors import QuoteError
from investment_tracker.services.quote_api import QuoteApiClient, handle_quote_request


class _StaticClient:
    def __init__(self, outcome):
        self.outcome = outcome

    def fetch_quote(self, ticker, asset_type):
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return dict(self.outcome, ticker=ticker, asset_type=asset_type)


def _factory(outcome):
    return lambda api_key: _StaticClient(outcome)


QUOTE = {
    "current_price": 101.25,
    "source": "GLOBAL_QUOTE",
    "as_of": "2024-03-15T10:00:00.000Z",
    "bid": None,
    "ask": None,
    "daily_pct_from_provider": 0.5,
    "last_refreshed": "2024-03-15",
    "timezone": None,
}


def test_handler_rejects_non_get() -> None:
    status, body = handle_quote_request("POST", {}, "key")
    assert status == 405


def test_handler_validates_asset_type_and_ticker() -> None:
    status, _ = handle_quote_request("GET", {"assetType": "bond", "ticker": "AAPL"}, "key")
    assert status == 400
    status, body = handle_quote_request("GET", {"assetType": "stock", "ticker": "9X"}, "key")
    assert status == 400
    assert "ticker" in body["error"]


def test_handler_requires_api_key() -> None:
    status, body = handle_quote_request("GET", {"assetType": "stock", "ticker": "AAPL"}, None)
    assert status == 500


def test_handler_returns_camel_case_quote() -> None:
    status, body = handle_quote_request(
        "GET", {"assetType": " Stock ", "ticker": "aapl"}, "key", client_factory=_factory(QUOTE)
    )
    assert status == 200
    assert body["ticker"] == "AAPL"
    assert body["assetType"] == "stock"
    assert body["currentPrice"] == 101.25
    assert body["asOf"] == "2024-03-15T10:00:00.000Z"
    assert body["dailyPctFromProvider"] == 0.5


@pytest.mark.parametrize(
    "code, expected_status",
    [("THROTTLED", 429), ("INVALID_SYMBOL", 422), ("PARSE_ERROR", 502), ("RETRY_EXHAUSTED", 502)],
)
def test_handler_maps_error_codes_to_status(code, expected_status) -> None:
    error = QuoteError("provider said no", code=code, details="raw")
    status, body = handle_quote_request(
        "GET", {"assetType": "stock", "ticker": "AAPL"}, "key", client_factory=_factory(error)
    )
    assert status == expected_status
    assert body == {"error": "provider said no", "code": code, "details": "raw"}


def test_handler_hides_unexpected_failures() -> None:
    status, body = handle_quote_request(
        "GET", {"assetType": "crypto", "ticker": "BTC"}, "key", client_factory=_factory(RuntimeError("boom"))
    )
    assert status == 502
    assert body == {"error": "Unexpected quote provider failure."}


def test_client_normalizes_success_payload() -> None:
    session = FakeSession(make_response(json_body={
        "assetType": "crypto",
        "ticker": "eth",
        "currentPrice": "3200.5",
        "source": "CURRENCY_EXCHANGE_RATE",
        "asOf": "2024-03-15T10:00:00Z",
        "bid": 3200.1,
        "ask": 0,
    }))
    quote = QuoteApiClient("http://localhost/api/market/quote", session=session).fetch_quote("eth", "crypto")
    assert quote["ticker"] == "ETH"
    assert quote["current_price"] == pytest.approx(3200.5)
    assert quote["bid"] == pytest.approx(3200.1)
    assert quote["ask"] is None
    assert quote["as_of"] == "2024-03-15T10:00:00.000Z"
    assert session.calls[0]["params"] == {"ticker": "ETH", "assetType": "crypto"}


def test_client_maps_throttled_response() -> None:
    session = FakeSession(make_response(status=429, json_body={"error": "Rate limited", "code": "THROTTLED"}))
    with pytest.raises(QuoteError) as info:
        QuoteApiClient("http://x", session=session).fetch_quote("AAPL", "stock")
    assert info.value.code == "THROTTLED"
    assert info.value.message == "Rate limited"
    assert "rate limit" in info.value.stale_warning.lower()


def test_client_maps_422_without_body_to_invalid_symbol() -> None:
    session = FakeSession(make_response(status=422, text="nope"))
    with pytest.raises(QuoteError) as info:
        QuoteApiClient("http://x", session=session).fetch_quote("ZZZZ", "stock")
    assert info.value.code == "INVALID_SYMBOL"
    assert info.value.message == "Invalid ticker."


def test_client_keeps_upstream_code_for_other_errors() -> None:
    session = FakeSession(make_response(status=502, json_body={"error": "Retry budget", "code": "RETRY_EXHAUSTED"}))
    with pytest.raises(QuoteError) as info:
        QuoteApiClient("http://x", session=session).fetch_quote("AAPL", "stock")
    assert info.value.code == "RETRY_EXHAUSTED"
    assert info.value.status == 502


def test_client_timeout_is_network_error() -> None:
    session = FakeSession(requests.Timeout("timed out"))
    with pytest.raises(QuoteError) as info:
        QuoteApiClient("http://x", session=session).fetch_quote("AAPL", "stock")
    assert info.value.code == "NETWORK_ERROR"


def test_client_rejects_payload_without_price() -> None:
    session = FakeSession(make_response(json_body={"ticker": "AAPL", "currentPrice": 0}))
    with pytest.raises(QuoteError) as info:
        QuoteApiClient("http://x", session=session).fetch_quote("AAPL", "stock")
    assert info.value.code == "PARSE_ERROR"


def test_handler_reports_parse_error_for_non_object_payload() -> None:
    session = FakeSession(make_response(text="null"))

    def factory(api_key):
        return AlphaVantageClient(api_key, session=session, min_request_interval=0, sleep=lambda s: None)

    status, body = handle_quote_request("GET", {"ticker": "AAPL", "assetType": "stock"}, "key", client_factory=factory)
    assert status == 502
    assert body["code"] == "PARSE_ERROR"
