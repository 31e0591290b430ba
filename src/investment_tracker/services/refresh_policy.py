"""Decide whether a position's price is stale enough to fetch again."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

from investment_tracker.config.constants import ASSET_CLASSES
from investment_tracker.utils.timestamps import as_utc, parse_timestamp


def refresh_threshold(asset_type: str) -> timedelta:
    """Maximum age of the latest snapshot before a refetch (stock 45 min, crypto 12 min)."""
    asset_class = ASSET_CLASSES.get(asset_type)
    if asset_class is None:
        raise ValueError(f"Unknown asset type: {asset_type!r}")
    return timedelta(minutes=asset_class["refresh_minutes"])


def should_refresh(
    position: Mapping[str, Any],
    latest_snapshot: Optional[Mapping[str, Any]],
    now: datetime,
    force: bool = False,
) -> bool:
    """
    Return True when a new quote should be fetched for position.

    True if forced, if the asset has no snapshot (or its timestamp does not
    parse), or if the latest snapshot is at least the asset class threshold old.
    """
    if force or latest_snapshot is None:
        return True
    taken_at = parse_timestamp(latest_snapshot.get("timestamp"))
    if taken_at is None:
        return True
    return as_utc(now) - taken_at >= refresh_threshold(position["asset_type"])
