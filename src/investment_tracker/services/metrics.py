"""Position and portfolio valuation (pure functions)."""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Optional

from investment_tracker.config.constants import METRIC_DECIMALS
from investment_tracker.models.core import HistoricalPoint, PortfolioSummary, PositionMetrics
from investment_tracker.services.snapshots import sort_snapshots


def round_metric(value: float) -> float:
    """Round to METRIC_DECIMALS to drop float noise while keeping crypto-scale precision."""
    rounded = round(value, METRIC_DECIMALS)
    return rounded + 0.0  # -0.0 -> 0.0


def pct_change(value: float, base: float) -> float:
    """(value - base) / base * 100, or 0.0 when base is not positive."""
    if base > 0:
        return (value - base) / base * 100.0
    return 0.0


def compute_position_metrics(
    position: Mapping[str, Any],
    current_price: float,
    refs: Mapping[str, Any],
    last_updated_timestamp: Optional[str],
) -> PositionMetrics:
    """
    Value a position at current_price against its cost and period references.

    Args:
        position: Position dict (amount_held, usd_invested, buy_price).
        current_price: Latest known price (fresh quote, stale snapshot or buy price).
        refs: AssetRefs with daily_ref_price and month_ref_price.
        last_updated_timestamp: Timestamp of the price used, or None.

    Returns:
        PositionMetrics with every number rounded to 6 decimals. Percentages
        are 0 when the invested amount or the reference price is not positive.
    """
    amount = float(position["amount_held"])
    invested_usd = float(position["usd_invested"])
    current_value_usd = amount * current_price

    pnl_total_usd = current_value_usd - invested_usd
    pnl_total_pct = pnl_total_usd / invested_usd * 100.0 if invested_usd > 0 else 0.0

    daily_ref = float(refs.get("daily_ref_price") or 0.0)
    month_ref = float(refs.get("month_ref_price") or 0.0)

    return {
        "amount": round_metric(amount),
        "invested_usd": round_metric(invested_usd),
        "buy_price": round_metric(float(position["buy_price"])),
        "current_price": round_metric(current_price),
        "current_value_usd": round_metric(current_value_usd),
        "pnl_total_usd": round_metric(pnl_total_usd),
        "pnl_total_pct": round_metric(pnl_total_pct),
        "pnl_daily_usd": round_metric(amount * (current_price - daily_ref)),
        "pnl_daily_pct": round_metric(pct_change(current_price, daily_ref)),
        "pnl_month_usd": round_metric(amount * (current_price - month_ref)),
        "pnl_month_pct": round_metric(pct_change(current_price, month_ref)),
        "last_updated_timestamp": last_updated_timestamp,
    }


def build_historical_series(
    position: Mapping[str, Any],
    snapshots: List[Mapping[str, Any]],
) -> List[HistoricalPoint]:
    """Equity and P&L vs. invested capital at each snapshot, oldest first."""
    amount = float(position["amount_held"])
    invested_usd = float(position["usd_invested"])
    points: List[HistoricalPoint] = []
    for snapshot in sort_snapshots(list(snapshots)):
        equity = amount * float(snapshot["price"])
        points.append({
            "timestamp": snapshot["timestamp"],
            "equity": round_metric(equity),
            "pnl_vs_invested": round_metric(equity - invested_usd),
        })
    return points


def summarize_positions(rows: Iterable[Mapping[str, Any]]) -> PortfolioSummary:
    """Portfolio totals over refreshed rows; total % is relative to total invested."""
    invested = current = pnl_total = pnl_daily = pnl_month = 0.0
    for row in rows:
        invested += row["invested_usd"]
        current += row["current_value_usd"]
        pnl_total += row["pnl_total_usd"]
        pnl_daily += row["pnl_daily_usd"]
        pnl_month += row["pnl_month_usd"]
    return {
        "invested_usd": round_metric(invested),
        "current_value_usd": round_metric(current),
        "pnl_total_usd": round_metric(pnl_total),
        "pnl_total_pct": round_metric(pnl_total / invested * 100.0 if invested > 0 else 0.0),
        "pnl_daily_usd": round_metric(pnl_daily),
        "pnl_month_usd": round_metric(pnl_month),
    }


def format_pct_text(value: float) -> str:
    """+1.23% / -0.50% with two decimals."""
    return f"{'+' if value >= 0 else ''}{value:.2f}%"
