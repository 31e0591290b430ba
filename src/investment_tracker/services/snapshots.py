"""Append-only price history per asset, read through the injected repository."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from investment_tracker.models.core import Snapshot
from investment_tracker.utils.timestamps import parse_timestamp

_MIN_DATETIME = datetime.min.replace(tzinfo=timezone.utc)


def sort_snapshots(snapshots: List[Snapshot]) -> List[Snapshot]:
    """Return a new list ordered by timestamp ascending (unparseable timestamps first)."""
    return sorted(snapshots, key=lambda s: parse_timestamp(s.get("timestamp")) or _MIN_DATETIME)


class SnapshotStore:
    """Stores and reads Snapshot records; never updates or removes them."""

    def __init__(self, repository) -> None:
        self.repository = repository

    def append(self, entry: Mapping[str, Any]) -> Snapshot:
        """
        Store a new observation and return it with its generated id.

        entry needs asset_type, ticker, price and source; timestamp, bid and
        ask are optional. Identical entries are stored twice.
        """
        return self.repository.add_snapshot(
            entry["asset_type"],
            entry["ticker"],
            entry["price"],
            entry["source"],
            timestamp=entry.get("timestamp"),
            bid=entry.get("bid"),
            ask=entry.get("ask"),
        )

    def latest(self, asset_type: str, ticker: str) -> Optional[Snapshot]:
        return self.repository.get_latest_snapshot_by_asset(asset_type, ticker)

    def list_by_asset(self, asset_type: str, ticker: str) -> List[Snapshot]:
        """All snapshots for the asset in no particular order."""
        return self.repository.list_snapshots_by_asset(asset_type, ticker)

    def sorted_by_asset(self, asset_type: str, ticker: str) -> List[Snapshot]:
        return sort_snapshots(self.list_by_asset(asset_type, ticker))
