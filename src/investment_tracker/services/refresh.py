"""Refresh quotes for held positions and assemble render-ready rows.

Per distinct (asset_type, ticker): read the latest snapshot, ask the refresh
policy, fetch a quote when needed, append it and roll the reference prices.
A failed fetch never propagates; the row falls back to the last known price
(latest snapshot, else the position's buy price) with the error attached.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, TypedDict

from investment_tracker.models.core import Position, PositionViewModel
from investment_tracker.services.errors import QuoteError, stale_warning_for_code
from investment_tracker.services.metrics import build_historical_series, compute_position_metrics
from investment_tracker.services.reference_prices import ReferencePriceTracker
from investment_tracker.services.refresh_policy import should_refresh
from investment_tracker.services.snapshots import SnapshotStore
from investment_tracker.utils.timestamps import as_utc, utc_now

logger = logging.getLogger(__name__)


class AssetRefreshState(TypedDict):
    current_price: Optional[float]
    last_updated_timestamp: Optional[str]
    stale_warning: Optional[str]
    refresh_error: Optional[str]


def asset_key(asset_type: str, ticker: str) -> str:
    return f"{asset_type}:{ticker.strip().upper()}"


class KeyedLocks:
    """One lock per asset key, created on first use."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def get(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock


class RefreshOrchestrator:
    """
    Sequences refresh policy, quote provider, snapshot store and reference
    tracker for a list of positions.

    Args:
        repository: Persistence collaborator (see services.storage).
        provider: Object with fetch_quote(ticker, asset_type) -> Quote that
            raises QuoteError on failure.
        max_workers: Distinct assets refreshed concurrently; 1 keeps the
            refresh strictly sequential.
        locks: Per-asset locks; share one KeyedLocks between orchestrators
            that may refresh the same assets at the same time.
    """

    def __init__(
        self,
        repository,
        provider,
        max_workers: int = 1,
        locks: Optional[KeyedLocks] = None,
    ) -> None:
        self.repository = repository
        self.provider = provider
        self.snapshots = SnapshotStore(repository)
        self.refs = ReferencePriceTracker(repository)
        self.max_workers = max(1, int(max_workers))
        self.locks = locks or KeyedLocks()

    def refresh(
        self,
        positions: Sequence[Position],
        force: bool = False,
        now: Optional[datetime] = None,
    ) -> List[PositionViewModel]:
        """
        Refresh prices and return one view model per position, in input order.

        Each asset is fetched at most once per call even when several
        positions hold it.
        """
        now = as_utc(now) if now is not None else utc_now()
        first_by_key: Dict[str, Position] = {}
        for position in positions:
            first_by_key.setdefault(asset_key(position["asset_type"], position["ticker"]), position)

        states: Dict[str, AssetRefreshState] = {}
        if self.max_workers == 1 or len(first_by_key) <= 1:
            for key, position in first_by_key.items():
                states[key] = self._refresh_asset(key, position, force, now)
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                futures = {
                    key: pool.submit(self._refresh_asset, key, position, force, now)
                    for key, position in first_by_key.items()
                }
                states = {key: future.result() for key, future in futures.items()}

        return [
            self._build_view_model(position, states[asset_key(position["asset_type"], position["ticker"])])
            for position in positions
        ]

    def _refresh_asset(
        self,
        key: str,
        position: Mapping[str, Any],
        force: bool,
        now: datetime,
    ) -> AssetRefreshState:
        asset_type, ticker = position["asset_type"], position["ticker"]
        latest = self.snapshots.latest(asset_type, ticker)
        state: AssetRefreshState = {
            "current_price": latest["price"] if latest else None,
            "last_updated_timestamp": latest["timestamp"] if latest else None,
            "stale_warning": None,
            "refresh_error": None,
        }
        if not should_refresh(position, latest, now, force):
            logger.debug("%s is fresh, skipping fetch", key)
            return state

        try:
            quote = self.provider.fetch_quote(ticker, asset_type)
        except QuoteError as exc:
            logger.warning("Refresh of %s failed (%s): %s", key, exc.code, exc.message)
            return self._fallback(state, position, latest, exc.message, exc.stale_warning)
        except Exception as exc:
            logger.exception("Unexpected error refreshing %s", key)
            return self._fallback(state, position, latest, str(exc) or type(exc).__name__, stale_warning_for_code(None))

        with self.locks.get(key):
            snapshot = self.snapshots.append({
                "asset_type": asset_type,
                "ticker": ticker,
                "price": quote["current_price"],
                "source": quote["source"],
                "timestamp": quote["as_of"],
                "bid": quote.get("bid"),
                "ask": quote.get("ask"),
            })
            self.refs.update_daily_if_needed(asset_type, ticker, quote["current_price"], quote["as_of"])
            self.refs.update_monthly_if_needed(asset_type, ticker, quote["current_price"], quote["as_of"])

        logger.info("Refreshed %s at %s", key, snapshot["price"])
        state["current_price"] = snapshot["price"]
        state["last_updated_timestamp"] = snapshot["timestamp"]
        return state

    @staticmethod
    def _fallback(
        state: AssetRefreshState,
        position: Mapping[str, Any],
        latest: Optional[Mapping[str, Any]],
        error: str,
        warning: str,
    ) -> AssetRefreshState:
        if latest is None:
            state["current_price"] = position["buy_price"]
            state["last_updated_timestamp"] = None
        state["refresh_error"] = error
        state["stale_warning"] = warning
        return state

    def _build_view_model(self, position: Position, state: AssetRefreshState) -> PositionViewModel:
        asset_type, ticker = position["asset_type"], position["ticker"]
        current_price = state["current_price"]
        if current_price is None:
            current_price = position["buy_price"]

        refs = self.refs.get_or_init(asset_type, ticker)
        history = build_historical_series(position, self.snapshots.list_by_asset(asset_type, ticker))
        metrics = compute_position_metrics(position, current_price, refs, state["last_updated_timestamp"])

        return {
            "id": position["id"],
            "ticker": ticker,
            "asset_type": asset_type,
            "created_at": position["created_at"],
            "stale_warning": state["stale_warning"],
            "refresh_error": state["refresh_error"],
            "historical_points": history,
            **metrics,
        }


def refresh_positions(
    positions: Sequence[Position],
    repository,
    provider,
    force: bool = False,
    now: Optional[datetime] = None,
    max_workers: int = 1,
) -> List[PositionViewModel]:
    """Convenience wrapper: refresh positions with a one-off orchestrator."""
    orchestrator = RefreshOrchestrator(repository, provider, max_workers=max_workers)
    return orchestrator.refresh(positions, force=force, now=now)
