"""Global configuration constants for Investment Tracker.

These values are free of any presentation concerns so they can be reused by
services, the CLI, and tests.
"""

from __future__ import annotations

from pathlib import Path

# Base directory for data files (defaults to project root)
BASE_DIR = Path(__file__).resolve().parents[3]

# --- File paths ---
PORTFOLIO_FILE = str(BASE_DIR / "investments.json")

# --- Environment variable names ---
ENV_ALPHA_VANTAGE_API_KEY = "ALPHA_VANTAGE_API_KEY"
ENV_QUOTE_API_URL = "QUOTE_API_URL"
ENV_DATA_FILE = "INVESTMENT_TRACKER_DATA"

# API endpoints
ALPHA_VANTAGE_API_URL = "https://www.alphavantage.co/query"

# Provider transport settings (seconds)
QUOTE_REQUEST_TIMEOUT = 12.0
MAX_RETRIES = 1
RETRY_BACKOFF = 0.3
MIN_REQUEST_INTERVAL = 1.1
RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})

# Ticker rules: trimmed, uppercased, 1-15 chars
TICKER_PATTERN = r"^[A-Z][A-Z0-9.-]{0,14}$"

# Asset classes: provider function and staleness threshold per asset type.
# Adding an asset class is one entry here (plus a parser if the function is new).
ASSET_CLASSES = {
    "stock": {"function": "GLOBAL_QUOTE", "refresh_minutes": 45},
    "crypto": {"function": "CURRENCY_EXCHANGE_RATE", "refresh_minutes": 12},
}
ASSET_TYPES = tuple(ASSET_CLASSES)

# Decimal places kept on stored amounts and on computed metrics
AMOUNT_DECIMALS = 8
METRIC_DECIMALS = 6

# Position ledger movements; amounts at or below AMOUNT_EPSILON count as zero
ENTRY_TYPES = ("buy", "sell")
AMOUNT_EPSILON = 1e-8
