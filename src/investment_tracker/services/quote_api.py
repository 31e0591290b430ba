"""Quote HTTP endpoint handler and the client that consumes it.

The endpoint keeps the provider API key on the server side; clients only see
normalized quotes (camelCase JSON) or `{error, code, details}` with a status
derived from the error code.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import requests

from investment_tracker.config.constants import ASSET_CLASSES, QUOTE_REQUEST_TIMEOUT, TICKER_PATTERN
from investment_tracker.models.core import Quote
from investment_tracker.services.alpha_vantage import (
    AlphaVantageClient,
    parse_optional_number,
    parse_positive_number,
)
from investment_tracker.services.errors import (
    HTTP_ERROR,
    INVALID_SYMBOL,
    NETWORK_ERROR,
    PARSE_ERROR,
    THROTTLED,
    QuoteError,
)
from investment_tracker.utils.timestamps import normalize_timestamp

logger = logging.getLogger(__name__)

_TICKER_RE = re.compile(TICKER_PATTERN)

# snake_case Quote field -> wire name
WIRE_FIELDS = {
    "asset_type": "assetType",
    "ticker": "ticker",
    "current_price": "currentPrice",
    "source": "source",
    "as_of": "asOf",
    "bid": "bid",
    "ask": "ask",
    "daily_pct_from_provider": "dailyPctFromProvider",
    "last_refreshed": "lastRefreshed",
    "timezone": "timezone",
}


def quote_to_payload(quote: Mapping[str, Any]) -> Dict[str, Any]:
    """Serialize a Quote to the endpoint's JSON shape."""
    return {wire: quote.get(field) for field, wire in WIRE_FIELDS.items()}


def payload_to_quote(payload: Any) -> Quote:
    """
    Validate and normalize an endpoint success payload.

    Raises:
        QuoteError(PARSE_ERROR): if the payload is not an object or lacks a
        ticker or a positive price.
    """
    if not isinstance(payload, dict):
        raise QuoteError("Unexpected quote payload.", code=PARSE_ERROR)

    ticker = str(payload.get("ticker") or "").strip().upper()
    current_price = parse_positive_number(payload.get("currentPrice"))
    if not ticker or current_price is None:
        raise QuoteError("Quote response is missing required fields.", code=PARSE_ERROR)

    bid = parse_positive_number(payload.get("bid"))
    ask = parse_positive_number(payload.get("ask"))
    return {
        "asset_type": "crypto" if payload.get("assetType") == "crypto" else "stock",
        "ticker": ticker,
        "current_price": current_price,
        "source": "CURRENCY_EXCHANGE_RATE" if payload.get("source") == "CURRENCY_EXCHANGE_RATE" else "GLOBAL_QUOTE",
        "as_of": normalize_timestamp(payload.get("asOf")),
        "bid": bid,
        "ask": ask,
        "daily_pct_from_provider": parse_optional_number(payload.get("dailyPctFromProvider")),
        "last_refreshed": payload.get("lastRefreshed") if isinstance(payload.get("lastRefreshed"), str) else None,
        "timezone": payload.get("timezone") if isinstance(payload.get("timezone"), str) else None,
    }


def handle_quote_request(
    method: str,
    query: Mapping[str, Any],
    api_key: Optional[str],
    client_factory: Callable[[str], Any] = AlphaVantageClient,
) -> Tuple[int, Dict[str, Any]]:
    """
    Serve `GET ?ticker=..&assetType=..`.

    Args:
        method: HTTP method of the incoming request.
        query: Query parameters.
        api_key: Provider API key from the server environment.
        client_factory: Builds a quote provider from the API key.

    Returns:
        (status, json_body).
    """
    if (method or "").upper() != "GET":
        return 405, {"error": "Method not allowed."}

    asset_type = str(query.get("assetType") or "").strip().lower()
    ticker = str(query.get("ticker") or "").strip().upper()

    if asset_type not in ASSET_CLASSES:
        return 400, {"error": "Query parameter 'assetType' must be one of: " + ", ".join(ASSET_CLASSES) + "."}
    if not _TICKER_RE.match(ticker):
        return 400, {"error": "Query parameter 'ticker' is invalid."}
    if not api_key:
        logger.error("Quote endpoint called without a provider API key configured")
        return 500, {"error": "Missing ALPHA_VANTAGE_API_KEY environment variable."}

    try:
        quote = client_factory(api_key).fetch_quote(ticker, asset_type)
    except QuoteError as exc:
        logger.warning("Quote for %s:%s failed with %s: %s", asset_type, ticker, exc.code, exc.message)
        return exc.status, {"error": exc.message, "code": exc.code, "details": exc.details}
    except Exception:
        logger.exception("Unexpected quote provider failure for %s:%s", asset_type, ticker)
        return 502, {"error": "Unexpected quote provider failure."}

    return 200, quote_to_payload(quote)


def error_from_response(response: requests.Response) -> QuoteError:
    """Map an endpoint error response back to a QuoteError."""
    status = response.status_code
    try:
        data = response.json()
    except ValueError:
        data = None
    message = data.get("error") if isinstance(data, dict) and isinstance(data.get("error"), str) else None
    code = data.get("code") if isinstance(data, dict) and isinstance(data.get("code"), str) else None
    details = data.get("details") if isinstance(data, dict) and isinstance(data.get("details"), str) else None

    if code == THROTTLED or status == 429:
        return QuoteError(message or "Rate limited by provider.", code=THROTTLED, status=status, details=details)
    if code == INVALID_SYMBOL or status == 422:
        return QuoteError(message or "Invalid ticker.", code=INVALID_SYMBOL, status=status, details=details)
    return QuoteError(message or "Quote request failed.", code=code or HTTP_ERROR, status=status, details=details)


class QuoteApiClient:
    """Quote provider that calls the quote endpoint instead of the upstream API."""

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = QUOTE_REQUEST_TIMEOUT,
    ) -> None:
        self.base_url = base_url
        self.session = session or requests.Session()
        self.timeout = timeout

    def fetch_quote(self, ticker: str, asset_type: str) -> Quote:
        """Fetch one quote. Raises QuoteError; timeouts and connection failures are NETWORK_ERROR."""
        try:
            response = self.session.get(
                self.base_url,
                params={"ticker": str(ticker or "").strip().upper(), "assetType": asset_type},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise QuoteError("Quote request failed.", code=NETWORK_ERROR, details=str(exc)[:240]) from exc

        if not response.ok:
            raise error_from_response(response)
        try:
            payload = response.json()
        except ValueError as exc:
            raise QuoteError("Unexpected quote payload.", code=PARSE_ERROR) from exc
        return payload_to_quote(payload)
