"""Data persistence: positions, entries, price snapshots and reference prices in one JSON document."""

from __future__ import annotations

import copy
import json
import logging
import math
import os
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from investment_tracker.config.constants import AMOUNT_DECIMALS, AMOUNT_EPSILON, ASSET_TYPES
from investment_tracker.models.core import AssetRefs, Entry, Position, Snapshot
from investment_tracker.services.ledger import (
    check_sell,
    group_by_asset,
    normalize_entry_type,
    sort_entries,
    summarize_entries,
)
from investment_tracker.services.reference_prices import init_refs, roll_daily_ref, roll_month_ref
from investment_tracker.utils.timestamps import normalize_timestamp, parse_timestamp, to_iso, utc_now

logger = logging.getLogger(__name__)

_MIN_DATETIME = datetime.min.replace(tzinfo=timezone.utc)


def round_amount(value: float, decimals: int = AMOUNT_DECIMALS) -> float:
    return round(value, decimals)


def parse_positive_number(value: Any, field: str) -> float:
    """Return value as a float rounded to AMOUNT_DECIMALS. Raises ValueError unless finite and > 0."""
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be a number.") from None
    if not math.isfinite(parsed) or parsed <= 0:
        raise ValueError(f"{field} must be greater than 0.")
    return round_amount(parsed)


def normalize_ticker(ticker: Any) -> str:
    normalized = str(ticker if ticker is not None else "").strip().upper()
    if not normalized:
        raise ValueError("Ticker is required.")
    return normalized


def normalize_asset_type(asset_type: Any) -> str:
    if asset_type not in ASSET_TYPES:
        raise ValueError("Asset type must be one of: " + ", ".join(ASSET_TYPES) + ".")
    return asset_type


def build_asset_key(asset_type: str, ticker: str) -> str:
    """Storage key for per-asset records, e.g. 'stock:AAPL'."""
    return f"{normalize_asset_type(asset_type)}:{normalize_ticker(ticker)}"


def _snapshot_sort_key(item: Dict[str, Any]):
    return parse_timestamp(item.get("timestamp")) or _MIN_DATETIME


def _created_sort_key(item: Dict[str, Any]):
    return (item.get("created_at", ""), item.get("id", ""))


def get_default_data() -> Dict[str, Any]:
    """Return a fresh, empty data structure (no file I/O)."""
    return {"positions": [], "entries": [], "snapshots": [], "refs": {}}


def load_data(path: str) -> Dict[str, Any]:
    """
    Load the portfolio document from JSON.

    A missing file yields default data; an unreadable or corrupt file raises.
    """
    if not os.path.exists(path):
        return get_default_data()
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Portfolio file {path} does not contain a JSON object.")
    data.setdefault("positions", [])
    data.setdefault("entries", [])
    data.setdefault("snapshots", [])
    data.setdefault("refs", {})
    return data


def save_data(data: Dict[str, Any], path: str) -> None:
    """Save the portfolio document to JSON. Raises on I/O error."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=4)


class JsonInvestmentsRepository:
    """
    Repository for positions, entries, snapshots and reference prices.

    Positions are derived: every change goes through the entry ledger and
    the positions are rebuilt from it, one per (asset_type, ticker) key.

    With a path, state is loaded once and written back after every mutation;
    without one it lives in memory only. Every operation holds one lock, so
    writes for any (asset_type, ticker) key are linearizable. Returned records
    are copies; mutating them does not change stored state.
    """

    def __init__(self, path: Optional[str] = None, now: Callable[[], datetime] = utc_now) -> None:
        self.path = path
        self._now = now
        self._lock = threading.RLock()
        self._data = load_data(path) if path else get_default_data()
        with self._lock:
            self._backfill_entries()

    def _save(self) -> None:
        if self.path:
            save_data(self._data, self.path)

    # --- Positions ---

    def _find_position(self, position_id: str) -> Optional[Position]:
        return next((p for p in self._data["positions"] if p.get("id") == position_id), None)

    def _position_for_key(self, key: str) -> Optional[Position]:
        return next((p for p in self._data["positions"] if build_asset_key(p["asset_type"], p["ticker"]) == key), None)

    def list_positions(self) -> List[Position]:
        """All positions, oldest first (ties broken by id)."""
        with self._lock:
            return copy.deepcopy(sorted(self._data["positions"], key=_created_sort_key))

    def get_position(self, position_id: str) -> Optional[Position]:
        with self._lock:
            position = self._find_position(position_id)
            return copy.deepcopy(position) if position else None

    def add_position(
        self,
        asset_type: str,
        ticker: str,
        usd_invested: float,
        buy_price: float,
        created_at: Optional[str] = None,
        entry_type: str = "buy",
    ) -> Position:
        """
        Record a movement through add_entry and return the asset's position.

        A buy for an asset that is already held joins the existing position.
        Raises ValueError on bad input, or after recording a sell that empties
        the position.
        """
        usd = parse_positive_number(usd_invested, "usd_invested")
        price = parse_positive_number(buy_price, "buy_price")
        position, _ = self.add_entry(asset_type, ticker, entry_type, usd, price, created_at=created_at)
        if position is None:
            raise ValueError("The position is empty after this movement.")
        return position

    def edit_position(self, position_id: str, **patch: Any) -> Optional[Position]:
        """
        Update asset_type, ticker, usd_invested, buy_price or created_at.

        The position's entries are replaced by one buy entry built from the
        patched values, so amount_held is recomputed. Returns None if the
        position does not exist.
        """
        allowed = {"asset_type", "ticker", "usd_invested", "buy_price", "created_at"}
        unknown = set(patch) - allowed
        if unknown:
            raise ValueError(f"Cannot edit position fields: {', '.join(sorted(unknown))}")
        with self._lock:
            current = self._find_position(position_id)
            if current is None:
                return None
            asset_type = normalize_asset_type(patch.get("asset_type", current["asset_type"]))
            ticker = normalize_ticker(patch.get("ticker", current["ticker"]))
            usd = parse_positive_number(patch.get("usd_invested", current["usd_invested"]), "usd_invested")
            price = parse_positive_number(patch.get("buy_price", current["buy_price"]), "buy_price")
            if "created_at" in patch:
                current["created_at"] = normalize_timestamp(patch["created_at"], self._now())
            replacement = self._new_entry(position_id, asset_type, ticker, "buy", usd, price, current["created_at"])

            self._data["entries"] = [e for e in self._data["entries"] if e.get("position_id") != position_id]
            self._data["entries"].append(replacement)
            self._rebuild_positions()
            self._save()
            updated = self._find_position(position_id)
            return copy.deepcopy(updated) if updated else None

    def delete_position(self, position_id: str) -> bool:
        """Remove a position and its entries. The asset's snapshots and refs are kept."""
        with self._lock:
            before = len(self._data["entries"])
            self._data["entries"] = [e for e in self._data["entries"] if e.get("position_id") != position_id]
            if len(self._data["entries"]) == before:
                return False
            self._rebuild_positions()
            self._save()
            return True

    # --- Entries ---

    def _new_entry(
        self,
        position_id: str,
        asset_type: str,
        ticker: str,
        entry_type: str,
        usd_amount: float,
        price: float,
        created_at: str,
    ) -> Entry:
        return {
            "id": str(uuid.uuid4()),
            "position_id": position_id,
            "asset_type": asset_type,
            "ticker": ticker,
            "entry_type": entry_type,
            "usd_amount": usd_amount,
            "price": price,
            "amount": round_amount(usd_amount / price),
            "created_at": created_at,
        }

    def _entries_for_key(self, key: str) -> List[Entry]:
        return [e for e in self._data["entries"] if build_asset_key(e["asset_type"], e["ticker"]) == key]

    def _backfill_entries(self) -> None:
        """Give positions stored without entries one buy entry each."""
        keyed = {build_asset_key(e["asset_type"], e["ticker"]) for e in self._data["entries"]}
        missing = [p for p in self._data["positions"] if build_asset_key(p["asset_type"], p["ticker"]) not in keyed]
        if not missing:
            return
        for position in missing:
            self._data["entries"].append(
                self._new_entry(
                    position["id"],
                    normalize_asset_type(position["asset_type"]),
                    normalize_ticker(position["ticker"]),
                    "buy",
                    parse_positive_number(position["usd_invested"], "usd_invested"),
                    parse_positive_number(position["buy_price"], "buy_price"),
                    normalize_timestamp(position.get("created_at"), self._now()),
                )
            )
        logger.info("Created buy entries for %d position(s) stored without entries", len(missing))
        self._rebuild_positions()
        self._save()

    def _rebuild_positions(self) -> None:
        """
        Recompute every position from the entries, one per asset key.

        The oldest existing position of a key keeps its id and created_at;
        keys whose net amount is zero lose their position.
        """
        owners: Dict[str, Position] = {}
        for position in sorted(self._data["positions"], key=_created_sort_key):
            owners.setdefault(build_asset_key(position["asset_type"], position["ticker"]), position)

        rebuilt: List[Position] = []
        for key, group in group_by_asset(self._data["entries"], build_asset_key).items():
            ordered = sort_entries(group)
            owner = owners.get(key)
            position_id = owner["id"] if owner else ordered[0]["position_id"]
            for entry in group:
                entry["position_id"] = position_id

            summary = summarize_entries(ordered)
            if summary is None or summary["net_amount"] <= AMOUNT_EPSILON:
                continue
            buy_price = round_amount(summary["net_cost_usd"] / summary["net_amount"])
            if buy_price <= AMOUNT_EPSILON:
                buy_price = round_amount(summary["fallback_price"])
            asset_type, ticker = key.split(":", 1)
            rebuilt.append({
                "id": position_id,
                "asset_type": asset_type,
                "ticker": ticker,
                "amount_held": summary["net_amount"],
                "usd_invested": summary["net_cost_usd"],
                "buy_price": buy_price,
                "created_at": owner["created_at"] if owner else summary["first_created_at"],
            })
        self._data["positions"] = sorted(rebuilt, key=_created_sort_key)

    def add_entry(
        self,
        asset_type: str,
        ticker: str,
        entry_type: str,
        usd_amount: float,
        price: float,
        created_at: Optional[str] = None,
    ) -> Tuple[Optional[Position], Entry]:
        """
        Record a buy or sell of usd_amount at price and rebuild the asset's position.

        Returns:
            (position, entry); position is None when a sell brought the
            held amount to zero.

        Raises:
            ValueError: on invalid input, or a sell larger than the held amount.
        """
        asset_type = normalize_asset_type(asset_type)
        ticker = normalize_ticker(ticker)
        entry_type = normalize_entry_type(entry_type)
        usd = parse_positive_number(usd_amount, "usd_amount")
        unit_price = parse_positive_number(price, "price")
        created = normalize_timestamp(created_at, self._now())
        key = build_asset_key(asset_type, ticker)

        with self._lock:
            existing = self._entries_for_key(key)
            position = self._position_for_key(key)
            if position is not None:
                position_id = position["id"]
            elif existing:
                position_id = sort_entries(existing)[0]["position_id"]
            else:
                position_id = str(uuid.uuid4())
            entry = self._new_entry(position_id, asset_type, ticker, entry_type, usd, unit_price, created)
            if entry_type == "sell":
                check_sell(existing, entry["amount"])

            self._data["entries"].append(entry)
            self._rebuild_positions()
            self._save()
            position = self._position_for_key(key)

        logger.info("Recorded %s of %s %s (%s)", entry_type, asset_type, ticker, entry["amount"])
        return copy.deepcopy(position), copy.deepcopy(entry)

    def delete_entry(self, entry_id: str) -> bool:
        """Remove one entry and rebuild positions. Returns False if it does not exist."""
        with self._lock:
            before = len(self._data["entries"])
            self._data["entries"] = [e for e in self._data["entries"] if e.get("id") != entry_id]
            if len(self._data["entries"]) == before:
                return False
            self._rebuild_positions()
            self._save()
            return True

    def list_entries_by_position(self, position_id: str) -> List[Entry]:
        """Entries of a position, newest first."""
        with self._lock:
            items = [e for e in self._data["entries"] if e.get("position_id") == position_id]
            return copy.deepcopy(sorted(items, key=_created_sort_key, reverse=True))

    def list_entries_by_asset(self, asset_type: str, ticker: str) -> List[Entry]:
        """Entries of an asset, newest first."""
        key = build_asset_key(asset_type, ticker)
        with self._lock:
            return copy.deepcopy(sorted(self._entries_for_key(key), key=_created_sort_key, reverse=True))

    # --- Snapshots ---

    def add_snapshot(
        self,
        asset_type: str,
        ticker: str,
        price: float,
        source: str,
        timestamp: Optional[str] = None,
        bid: Optional[float] = None,
        ask: Optional[float] = None,
    ) -> Snapshot:
        """Append a price observation. Never deduplicates."""
        snapshot: Snapshot = {
            "id": str(uuid.uuid4()),
            "asset_type": normalize_asset_type(asset_type),
            "ticker": normalize_ticker(ticker),
            "price": parse_positive_number(price, "price"),
            "source": source,
            "timestamp": normalize_timestamp(timestamp, self._now()),
        }
        if bid is not None:
            snapshot["bid"] = float(bid)
        if ask is not None:
            snapshot["ask"] = float(ask)
        with self._lock:
            self._data["snapshots"].append(snapshot)
            self._save()
        return copy.deepcopy(snapshot)

    def list_snapshots_by_asset(self, asset_type: str, ticker: str) -> List[Snapshot]:
        """Snapshots for one asset in storage order."""
        asset_type = normalize_asset_type(asset_type)
        ticker = normalize_ticker(ticker)
        with self._lock:
            return [
                copy.deepcopy(s)
                for s in self._data["snapshots"]
                if s.get("asset_type") == asset_type and s.get("ticker") == ticker
            ]

    def get_latest_snapshot_by_asset(self, asset_type: str, ticker: str) -> Optional[Snapshot]:
        """Snapshot with the greatest timestamp (last appended wins ties), or None."""
        snapshots = self.list_snapshots_by_asset(asset_type, ticker)
        if not snapshots:
            return None
        indexed = list(enumerate(snapshots))
        _, latest = max(indexed, key=lambda pair: (_snapshot_sort_key(pair[1]), pair[0]))
        return latest

    # --- Reference prices ---

    def _refs_for(self, asset_type: str, ticker: str) -> AssetRefs:
        key = build_asset_key(asset_type, ticker)
        refs = self._data["refs"].get(key)
        if refs is None:
            latest = self.get_latest_snapshot_by_asset(asset_type, ticker)
            if latest is not None:
                refs = init_refs(latest["price"], latest["timestamp"])
            else:
                refs = init_refs(None, to_iso(self._now()))
            self._data["refs"][key] = refs
            self._save()
        return refs

    def get_or_init_refs(self, asset_type: str, ticker: str) -> AssetRefs:
        """Reference prices for an asset, seeded from its latest snapshot on first access."""
        with self._lock:
            return copy.deepcopy(self._refs_for(asset_type, ticker))

    def update_daily_ref_if_needed(
        self, asset_type: str, ticker: str, price: float, timestamp: Optional[str] = None
    ) -> AssetRefs:
        value = parse_positive_number(price, "daily_ref_price")
        as_of = parse_timestamp(timestamp) or self._now()
        with self._lock:
            refs = self._refs_for(asset_type, ticker)
            if roll_daily_ref(refs, value, as_of):
                logger.debug("Daily reference for %s:%s set to %s", asset_type, ticker, value)
                self._save()
            return copy.deepcopy(refs)

    def update_month_ref_if_needed(
        self, asset_type: str, ticker: str, price: float, timestamp: Optional[str] = None
    ) -> AssetRefs:
        value = parse_positive_number(price, "month_ref_price")
        as_of = parse_timestamp(timestamp) or self._now()
        with self._lock:
            refs = self._refs_for(asset_type, ticker)
            if roll_month_ref(refs, value, as_of):
                logger.debug("Monthly reference for %s:%s set to %s", asset_type, ticker, value)
                self._save()
            return copy.deepcopy(refs)

    def get_refs_map(self) -> Dict[str, AssetRefs]:
        with self._lock:
            return copy.deepcopy(self._data["refs"])

    def clear_all(self) -> None:
        with self._lock:
            self._data = get_default_data()
            self._save()
