"""Typed structures for positions, price history and valuation results."""

from __future__ import annotations

from typing import Literal, Optional, TypedDict

AssetType = Literal["stock", "crypto"]
SnapshotSource = Literal["GLOBAL_QUOTE", "CURRENCY_EXCHANGE_RATE"]
EntryType = Literal["buy", "sell"]


class Position(TypedDict):
    """A held quantity of a ticker plus its cost basis."""

    id: str
    asset_type: AssetType
    ticker: str
    amount_held: float
    usd_invested: float
    buy_price: float
    created_at: str


class Entry(TypedDict):
    """One buy or sell movement. usd_amount and price describe the movement itself."""

    id: str
    position_id: str
    asset_type: AssetType
    ticker: str
    entry_type: EntryType
    usd_amount: float
    price: float
    amount: float
    created_at: str


class Snapshot(TypedDict, total=False):
    """One timestamped price observation. bid/ask are present only when known."""

    id: str
    asset_type: AssetType
    ticker: str
    price: float
    source: SnapshotSource
    timestamp: str
    bid: float
    ask: float


class AssetRefs(TypedDict):
    """Period-boundary reference prices for one (asset_type, ticker) key."""

    daily_ref_price: float
    daily_ref_timestamp: str
    month_ref_price: float
    month_ref_timestamp: str


class Quote(TypedDict):
    """Normalized provider response for one ticker."""

    asset_type: AssetType
    ticker: str
    current_price: float
    source: SnapshotSource
    as_of: str
    bid: Optional[float]
    ask: Optional[float]
    daily_pct_from_provider: Optional[float]
    last_refreshed: Optional[str]
    timezone: Optional[str]


class HistoricalPoint(TypedDict):
    timestamp: str
    equity: float
    pnl_vs_invested: float


class PositionMetrics(TypedDict):
    """Valuation of one position as returned by compute_position_metrics."""

    amount: float
    invested_usd: float
    buy_price: float
    current_price: float
    current_value_usd: float
    pnl_total_usd: float
    pnl_total_pct: float
    pnl_daily_usd: float
    pnl_daily_pct: float
    pnl_month_usd: float
    pnl_month_pct: float
    last_updated_timestamp: Optional[str]


class PositionViewModel(PositionMetrics):
    """Render-ready row: metrics plus identity, history and stale/error annotations."""

    id: str
    ticker: str
    asset_type: AssetType
    created_at: str
    stale_warning: Optional[str]
    refresh_error: Optional[str]
    historical_points: list[HistoricalPoint]


class PortfolioSummary(TypedDict):
    """Totals across refreshed positions as returned by summarize_positions."""

    invested_usd: float
    current_value_usd: float
    pnl_total_usd: float
    pnl_total_pct: float
    pnl_daily_usd: float
    pnl_month_usd: float
