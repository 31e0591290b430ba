"""Daily and monthly reference prices that anchor period P&L.

A reference price is fixed once per period: it only moves when an observation
falls on a strictly later UTC calendar day (daily) or month (monthly) than the
stored one, so intraday movement is never folded into the baseline.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional

from investment_tracker.models.core import AssetRefs
from investment_tracker.utils.timestamps import day_key, month_key, parse_timestamp, to_iso


def init_refs(price: Optional[float], timestamp: str) -> AssetRefs:
    """Seed both references with the same observation (price 0 when unknown)."""
    seed = float(price) if price is not None and price > 0 else 0.0
    return {
        "daily_ref_price": seed,
        "daily_ref_timestamp": timestamp,
        "month_ref_price": seed,
        "month_ref_timestamp": timestamp,
    }


def daily_ref_due(refs: Mapping[str, Any], as_of: datetime) -> bool:
    """True when as_of is on a later UTC day than the stored daily reference (or none is usable)."""
    if (refs.get("daily_ref_price") or 0) <= 0:
        return True
    stored = parse_timestamp(refs.get("daily_ref_timestamp"))
    return stored is None or day_key(as_of) > day_key(stored)


def month_ref_due(refs: Mapping[str, Any], as_of: datetime) -> bool:
    """True when as_of is in a later UTC month than the stored monthly reference (or none is usable)."""
    if (refs.get("month_ref_price") or 0) <= 0:
        return True
    stored = parse_timestamp(refs.get("month_ref_timestamp"))
    return stored is None or month_key(as_of) > month_key(stored)


def roll_daily_ref(refs: AssetRefs, price: float, as_of: datetime) -> bool:
    """Overwrite the daily reference in place if due. Returns True when it changed."""
    if not daily_ref_due(refs, as_of):
        return False
    refs["daily_ref_price"] = float(price)
    refs["daily_ref_timestamp"] = to_iso(as_of)
    return True


def roll_month_ref(refs: AssetRefs, price: float, as_of: datetime) -> bool:
    """Overwrite the monthly reference in place if due. Returns True when it changed."""
    if not month_ref_due(refs, as_of):
        return False
    refs["month_ref_price"] = float(price)
    refs["month_ref_timestamp"] = to_iso(as_of)
    return True


class ReferencePriceTracker:
    """Reads and rolls reference prices through the injected repository."""

    def __init__(self, repository) -> None:
        self.repository = repository

    def get_or_init(self, asset_type: str, ticker: str) -> AssetRefs:
        return self.repository.get_or_init_refs(asset_type, ticker)

    def update_daily_if_needed(
        self, asset_type: str, ticker: str, price: float, as_of: Optional[str] = None
    ) -> AssetRefs:
        return self.repository.update_daily_ref_if_needed(asset_type, ticker, price, as_of)

    def update_monthly_if_needed(
        self, asset_type: str, ticker: str, price: float, as_of: Optional[str] = None
    ) -> AssetRefs:
        return self.repository.update_month_ref_if_needed(asset_type, ticker, price, as_of)
