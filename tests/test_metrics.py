"""Tests for position metrics, historical series and portfolio summary."""

import pytest

from investment_tracker.services.metrics import (
    build_historical_series,
    compute_position_metrics,
    format_pct_text,
    summarize_positions,
)

AAPL = {"amount_held": 5.0, "usd_invested": 1000.0, "buy_price": 200.0}


def _refs(daily: float, month: float) -> dict:
    return {
        "daily_ref_price": daily,
        "daily_ref_timestamp": "2024-03-15T00:00:00.000Z",
        "month_ref_price": month,
        "month_ref_timestamp": "2024-03-01T00:00:00.000Z",
    }


def test_metrics_scenario() -> None:
    """Price 220 against daily ref 205 and monthly ref 180."""
    out = compute_position_metrics(AAPL, 220.0, _refs(205.0, 180.0), "2024-03-15T10:00:00.000Z")
    assert out["invested_usd"] == pytest.approx(1000.0)
    assert out["current_value_usd"] == pytest.approx(1100.0)
    assert out["pnl_total_usd"] == pytest.approx(100.0)
    assert out["pnl_total_pct"] == pytest.approx(10.0)
    assert out["pnl_daily_usd"] == pytest.approx(75.0)
    assert out["pnl_daily_pct"] == pytest.approx(7.317073)
    assert out["pnl_month_usd"] == pytest.approx(200.0)
    assert out["pnl_month_pct"] == pytest.approx(22.222222)
    assert out["last_updated_timestamp"] == "2024-03-15T10:00:00.000Z"


@pytest.mark.parametrize("price", [0.0, 1.0, 123.456])
def test_zero_invested_gives_zero_total_pct(price) -> None:
    position = {"amount_held": 2.0, "usd_invested": 0.0, "buy_price": 1.0}
    out = compute_position_metrics(position, price, _refs(1.0, 1.0), None)
    assert out["pnl_total_pct"] == 0


@pytest.mark.parametrize("ref", [0.0, -5.0])
def test_non_positive_refs_give_zero_pct(ref) -> None:
    out = compute_position_metrics(AAPL, 220.0, _refs(ref, ref), None)
    assert out["pnl_daily_pct"] == 0
    assert out["pnl_month_pct"] == 0


def test_metrics_rounded_to_six_decimals() -> None:
    position = {"amount_held": 0.1, "usd_invested": 0.3, "buy_price": 3.0}
    out = compute_position_metrics(position, 3.0, _refs(3.0, 3.0), None)
    assert out["current_value_usd"] == 0.3
    assert out["pnl_total_usd"] == 0.0


def test_historical_series_sorted_with_equity() -> None:
    snapshots = [
        {"timestamp": "2024-03-15T10:00:00.000Z", "price": 220.0},
        {"timestamp": "2024-03-13T10:00:00.000Z", "price": 190.0},
        {"timestamp": "2024-03-14T10:00:00+00:00", "price": 210.0},
    ]
    points = build_historical_series(AAPL, snapshots)
    assert [p["timestamp"][:10] for p in points] == ["2024-03-13", "2024-03-14", "2024-03-15"]
    assert [p["equity"] for p in points] == [950.0, 1050.0, 1100.0]
    assert [p["pnl_vs_invested"] for p in points] == [-50.0, 50.0, 100.0]


def test_historical_series_empty() -> None:
    assert build_historical_series(AAPL, []) == []


def test_summarize_positions() -> None:
    rows = [
        compute_position_metrics(AAPL, 220.0, _refs(205.0, 180.0), None),
        compute_position_metrics({"amount_held": 1.0, "usd_invested": 500.0, "buy_price": 500.0}, 400.0,
                                 _refs(410.0, 450.0), None),
    ]
    summary = summarize_positions(rows)
    assert summary["invested_usd"] == pytest.approx(1500.0)
    assert summary["current_value_usd"] == pytest.approx(1500.0)
    assert summary["pnl_total_usd"] == pytest.approx(0.0)
    assert summary["pnl_total_pct"] == pytest.approx(0.0)
    assert summary["pnl_daily_usd"] == pytest.approx(65.0)
    assert summary["pnl_month_usd"] == pytest.approx(150.0)


def test_summarize_empty() -> None:
    assert summarize_positions([])["pnl_total_pct"] == 0


def test_format_pct_text() -> None:
    assert format_pct_text(1.234) == "+1.23%"
    assert format_pct_text(-0.5) == "-0.50%"
    assert format_pct_text(0.0) == "+0.00%"
