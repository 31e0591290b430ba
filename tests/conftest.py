"""Pytest configuration: ensure src is on path, plus shared fakes for HTTP and quotes."""

import sys
from pathlib import Path

import pytest
import requests

_root = Path(__file__).resolve().parents[1]
_src = _root / "src"
if _src.is_dir() and str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from investment_tracker.services.errors import QuoteError  # noqa: E402
from investment_tracker.services.storage import JsonInvestmentsRepository  # noqa: E402


def make_response(status: int = 200, json_body=None, text: str = None) -> requests.Response:
    """Build a real requests.Response with the given status and body."""
    import json

    response = requests.Response()
    response.status_code = status
    if text is None:
        text = json.dumps(json_body) if json_body is not None else ""
    response._content = text.encode("utf-8")
    response.encoding = "utf-8"
    response.url = "https://example.test/query"
    return response


class FakeSession:
    """Stands in for requests.Session: replays queued responses or exceptions, records calls."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def get(self, url, params=None, timeout=None, headers=None):
        self.calls.append({"url": url, "params": dict(params or {}), "timeout": timeout})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeQuoteProvider:
    """Quote provider returning scripted quotes/errors per ticker, counting calls."""

    def __init__(self, as_of: str = "2024-03-15T10:00:00.000Z"):
        self.as_of = as_of
        self.results = {}
        self.calls = []

    def set_price(self, ticker: str, price: float, as_of: str = None):
        self.results[ticker] = ("price", price, as_of)

    def set_error(self, ticker: str, error: Exception):
        self.results[ticker] = ("error", error, None)

    def fetch_quote(self, ticker, asset_type):
        self.calls.append((asset_type, ticker))
        kind, value, as_of = self.results[ticker]
        if kind == "error":
            raise value
        return {
            "asset_type": asset_type,
            "ticker": ticker,
            "current_price": value,
            "source": "GLOBAL_QUOTE" if asset_type == "stock" else "CURRENCY_EXCHANGE_RATE",
            "as_of": as_of or self.as_of,
            "bid": None,
            "ask": None,
            "daily_pct_from_provider": None,
            "last_refreshed": None,
            "timezone": None,
        }


@pytest.fixture
def repository() -> JsonInvestmentsRepository:
    """In-memory repository."""
    return JsonInvestmentsRepository()


@pytest.fixture
def provider() -> FakeQuoteProvider:
    return FakeQuoteProvider()


@pytest.fixture
def throttled() -> QuoteError:
    return QuoteError("Rate limited", code="THROTTLED")
