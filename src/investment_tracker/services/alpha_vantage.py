"""Quote fetching from the Alpha Vantage API (stocks via GLOBAL_QUOTE, crypto via CURRENCY_EXCHANGE_RATE)."""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import requests

from investment_tracker.config.constants import (
    ALPHA_VANTAGE_API_URL,
    ASSET_CLASSES,
    MAX_RETRIES,
    MIN_REQUEST_INTERVAL,
    QUOTE_REQUEST_TIMEOUT,
    RETRY_BACKOFF,
    RETRYABLE_STATUSES,
    TICKER_PATTERN,
)
from investment_tracker.models.core import Quote
from investment_tracker.services.errors import (
    HTTP_ERROR,
    INVALID_SYMBOL,
    NETWORK_ERROR,
    PARSE_ERROR,
    RETRY_EXHAUSTED,
    THROTTLED,
    QuoteError,
)
from investment_tracker.utils.timestamps import to_iso, utc_now

logger = logging.getLogger(__name__)

_TICKER_RE = re.compile(TICKER_PATTERN)


def normalize_ticker(ticker: Any) -> str:
    """Trim and uppercase a ticker. Raises QuoteError(INVALID_SYMBOL) when the result is not a valid symbol."""
    normalized = str(ticker if ticker is not None else "").strip().upper()
    if not _TICKER_RE.match(normalized):
        raise QuoteError(
            f"Ticker {normalized!r} is invalid.",
            code=INVALID_SYMBOL,
            details="Tickers are 1-15 characters: a letter followed by letters, digits, '.' or '-'.",
        )
    return normalized


def parse_positive_number(value: Any) -> Optional[float]:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if parsed != parsed or parsed in (float("inf"), float("-inf")) or parsed <= 0:
        return None
    return parsed


def parse_optional_number(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if parsed != parsed or parsed in (float("inf"), float("-inf")):
        return None
    return parsed


def normalize_percent(value: Any) -> Optional[float]:
    """'1.2345%' -> 1.2345. Non-strings and unparseable values give None."""
    if not isinstance(value, str):
        return None
    return parse_optional_number(value.replace("%", "").strip())


def error_details(data: Any) -> str:
    """Short excerpt of a provider payload for error details."""
    if isinstance(data, str):
        return data[:240]
    if data is not None:
        try:
            return json.dumps(data)[:240]
        except (TypeError, ValueError):
            return "Provider payload could not be serialized."
    return "No details available."


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _global_quote_params(ticker: str) -> Dict[str, str]:
    return {"function": "GLOBAL_QUOTE", "symbol": ticker}


def _exchange_rate_params(ticker: str) -> Dict[str, str]:
    return {"function": "CURRENCY_EXCHANGE_RATE", "from_currency": ticker, "to_currency": "USD"}


def parse_global_quote(ticker: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Extract quote fields from a GLOBAL_QUOTE payload."""
    quote = payload.get("Global Quote")
    if not isinstance(quote, dict):
        raise QuoteError("Global Quote payload is missing.", code=PARSE_ERROR)

    price = parse_positive_number(quote.get("05. price"))
    if price is None:
        # Alpha Vantage answers unknown symbols with an empty object
        code = PARSE_ERROR if quote else INVALID_SYMBOL
        raise QuoteError("Global Quote price is invalid.", code=code, details=error_details(quote))

    return {
        "asset_type": "stock",
        "ticker": ticker,
        "current_price": price,
        "source": "GLOBAL_QUOTE",
        "bid": None,
        "ask": None,
        "daily_pct_from_provider": normalize_percent(quote.get("10. change percent")),
        "last_refreshed": _optional_str(quote.get("07. latest trading day")),
        "timezone": None,
    }


def parse_exchange_rate(ticker: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Extract quote fields from a CURRENCY_EXCHANGE_RATE payload."""
    rate = payload.get("Realtime Currency Exchange Rate")
    if not isinstance(rate, dict):
        raise QuoteError("Exchange rate payload is missing or symbol is invalid.", code=INVALID_SYMBOL)

    price = parse_positive_number(rate.get("5. Exchange Rate"))
    if price is None:
        code = PARSE_ERROR if rate else INVALID_SYMBOL
        raise QuoteError("Exchange rate price is invalid.", code=code, details=error_details(rate))

    bid = parse_optional_number(rate.get("8. Bid Price"))
    ask = parse_optional_number(rate.get("9. Ask Price"))
    return {
        "asset_type": "crypto",
        "ticker": ticker,
        "current_price": price,
        "source": "CURRENCY_EXCHANGE_RATE",
        "bid": bid if bid is not None and bid > 0 else None,
        "ask": ask if ask is not None and ask > 0 else None,
        "daily_pct_from_provider": None,
        "last_refreshed": _optional_str(rate.get("6. Last Refreshed")),
        "timezone": _optional_str(rate.get("7. Time Zone")),
    }


# Provider function name -> (request params builder, payload parser)
QUOTE_FUNCTIONS: Dict[str, tuple] = {
    "GLOBAL_QUOTE": (_global_quote_params, parse_global_quote),
    "CURRENCY_EXCHANGE_RATE": (_exchange_rate_params, parse_exchange_rate),
}


def check_provider_payload(payload: Any) -> None:
    """
    Raise for 200 responses that still signal a failure.

    Alpha Vantage reports rate limiting in "Note"/"Information" and rejected
    symbols in "Error Message"; none of these are retried.
    """
    if not isinstance(payload, dict):
        return
    for field in ("Information", "Note"):
        text = payload.get(field)
        if isinstance(text, str) and text.strip():
            raise QuoteError("Alpha Vantage rate limit exceeded.", code=THROTTLED, details=text)
    message = payload.get("Error Message")
    if isinstance(message, str) and message.strip():
        raise QuoteError("Alpha Vantage rejected the request.", code=INVALID_SYMBOL, details=message)


class AlphaVantageClient:
    """
    Quote provider backed by the Alpha Vantage query API.

    Transient failures (timeouts, connection errors, HTTP 408/429/5xx) are
    retried up to max_retries times with a linear backoff; requests from one
    client are spaced at least min_request_interval seconds apart.
    """

    def __init__(
        self,
        api_key: str,
        session: Optional[requests.Session] = None,
        base_url: str = ALPHA_VANTAGE_API_URL,
        timeout: float = QUOTE_REQUEST_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        backoff: float = RETRY_BACKOFF,
        min_request_interval: float = MIN_REQUEST_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.api_key = api_key
        self.session = session or requests.Session()
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff
        self.min_request_interval = min_request_interval
        self._sleep = sleep
        self._clock = clock
        self._now = now
        self._schedule_lock = threading.Lock()
        self._last_request_at: Optional[float] = None

    def _wait_for_slot(self) -> None:
        with self._schedule_lock:
            if self._last_request_at is not None:
                elapsed = self._clock() - self._last_request_at
                if elapsed < self.min_request_interval:
                    self._sleep(self.min_request_interval - elapsed)
            self._last_request_at = self._clock()

    def _send(self, params: Dict[str, str]) -> requests.Response:
        self._wait_for_slot()
        response = self.session.get(
            self.base_url,
            params={**params, "apikey": self.api_key},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response

    def request(self, params: Dict[str, str]) -> Dict[str, Any]:
        """
        Run one provider query and return the decoded JSON payload.

        Raises:
            QuoteError: THROTTLED / INVALID_SYMBOL from the payload, HTTP_ERROR
            for non-retryable statuses, PARSE_ERROR for non-JSON bodies,
            NETWORK_ERROR for other transport failures, RETRY_EXHAUSTED when
            every attempt failed transiently.
        """
        last_error: Optional[QuoteError] = None
        attempt = 0
        while attempt <= self.max_retries:
            try:
                response = self._send(params)
            except requests.HTTPError as exc:
                status = exc.response.status_code if exc.response is not None else None
                body = exc.response.text if exc.response is not None else str(exc)
                if status not in RETRYABLE_STATUSES:
                    raise QuoteError(
                        "Alpha Vantage request failed.",
                        code=HTTP_ERROR,
                        status=status,
                        details=error_details(body),
                    ) from exc
                last_error = QuoteError(
                    "Alpha Vantage request failed.",
                    code=HTTP_ERROR,
                    status=status,
                    retryable=True,
                    details=error_details(body),
                )
            except (requests.Timeout, requests.ConnectionError) as exc:
                last_error = QuoteError(
                    "Alpha Vantage request failed.",
                    code=NETWORK_ERROR,
                    retryable=True,
                    details=error_details(str(exc)),
                )
            except requests.RequestException as exc:
                raise QuoteError(
                    "Alpha Vantage request failed.",
                    code=NETWORK_ERROR,
                    details=error_details(str(exc)),
                ) from exc
            else:
                try:
                    payload = response.json()
                except ValueError as exc:
                    raise QuoteError(
                        "Alpha Vantage returned a non-JSON response.",
                        code=PARSE_ERROR,
                        details=error_details(response.text),
                    ) from exc
                if not isinstance(payload, dict):
                    raise QuoteError(
                        "Unexpected Alpha Vantage payload.",
                        code=PARSE_ERROR,
                        details=error_details(payload),
                    )
                check_provider_payload(payload)
                return payload

            attempt += 1
            if attempt <= self.max_retries:
                logger.warning(
                    "Transient %s from Alpha Vantage (%s), retrying (attempt %d of %d)",
                    last_error.code,
                    params.get("function"),
                    attempt + 1,
                    self.max_retries + 1,
                )
                self._sleep(self.backoff * attempt)

        raise QuoteError(
            "Retry budget exceeded for Alpha Vantage request.",
            code=RETRY_EXHAUSTED,
            status=last_error.status if last_error else None,
            details=f"{last_error.code}: {last_error.details}" if last_error else None,
        )

    def fetch_quote(self, ticker: str, asset_type: str) -> Quote:
        """
        Fetch a normalized quote for one ticker.

        Args:
            ticker: Symbol; trimmed and uppercased before use.
            asset_type: Key of ASSET_CLASSES ("stock" or "crypto").

        Returns:
            Quote dict with as_of set to the fetch time.

        Raises:
            ValueError: if asset_type is unknown.
            QuoteError: on any provider or transport failure.
        """
        asset_class = ASSET_CLASSES.get(asset_type)
        if asset_class is None:
            raise ValueError(f"Unknown asset type: {asset_type!r}")
        normalized = normalize_ticker(ticker)
        build_params, parse = QUOTE_FUNCTIONS[asset_class["function"]]

        logger.debug("Fetching %s quote for %s", asset_type, normalized)
        payload = self.request(build_params(normalized))
        quote = parse(normalized, payload)
        quote["as_of"] = to_iso(self._now())
        return quote  # type: ignore[return-value]

    def fetch_stock_quote(self, ticker: str) -> Quote:
        return self.fetch_quote(ticker, "stock")

    def fetch_crypto_rate(self, ticker: str) -> Quote:
        return self.fetch_quote(ticker, "crypto")
