"""Application bootstrap and core API entrypoints for Investment Tracker.

Provides a small core API (open_repository, build_provider, refresh_portfolio)
for use by the command line, scripts, or a web front end.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .config.constants import (
    ASSET_TYPES,
    ENV_ALPHA_VANTAGE_API_KEY,
    ENV_DATA_FILE,
    ENV_QUOTE_API_URL,
    PORTFOLIO_FILE,
)
from .config.logging_config import configure_logging
from .models.core import PortfolioSummary, PositionViewModel
from .services.alpha_vantage import AlphaVantageClient
from .services.metrics import format_pct_text, summarize_positions
from .services.quote_api import QuoteApiClient
from .services.refresh import RefreshOrchestrator
from .services.storage import JsonInvestmentsRepository

logger = logging.getLogger(__name__)


def open_repository(path: Optional[str] = None) -> JsonInvestmentsRepository:
    """Open the portfolio file (INVESTMENT_TRACKER_DATA, else the default path)."""
    return JsonInvestmentsRepository(path or os.getenv(ENV_DATA_FILE) or PORTFOLIO_FILE)


def build_provider(env: Optional[Dict[str, str]] = None):
    """
    Pick the quote provider from the environment.

    QUOTE_API_URL selects the quote endpoint client; otherwise Alpha Vantage is
    called directly with ALPHA_VANTAGE_API_KEY.

    Raises:
        RuntimeError: if neither variable is set.
    """
    env = os.environ if env is None else env
    api_url = env.get(ENV_QUOTE_API_URL)
    if api_url:
        return QuoteApiClient(api_url)
    api_key = env.get(ENV_ALPHA_VANTAGE_API_KEY)
    if api_key:
        return AlphaVantageClient(api_key)
    raise RuntimeError(f"Set {ENV_QUOTE_API_URL} or {ENV_ALPHA_VANTAGE_API_KEY} to fetch quotes.")


def refresh_portfolio(
    repository,
    provider,
    force: bool = False,
    now: Optional[datetime] = None,
    max_workers: int = 1,
) -> Tuple[List[PositionViewModel], PortfolioSummary]:
    """Refresh every stored position and return (rows, summary)."""
    orchestrator = RefreshOrchestrator(repository, provider, max_workers=max_workers)
    rows = orchestrator.refresh(repository.list_positions(), force=force, now=now)
    return rows, summarize_positions(rows)


def format_row(row: Dict[str, Any]) -> str:
    line = (
        f"{row['ticker']:<10} {row['asset_type']:<6} "
        f"{row['current_price']:>14.6f} {row['current_value_usd']:>14.2f} "
        f"{format_pct_text(row['pnl_total_pct']):>9} "
        f"{format_pct_text(row['pnl_daily_pct']):>9} "
        f"{format_pct_text(row['pnl_month_pct']):>9}"
    )
    if row.get("stale_warning"):
        line += f"  ! {row['stale_warning']}"
    return line


def format_summary(summary: PortfolioSummary) -> str:
    return (
        f"Invested {summary['invested_usd']:.2f} USD | Value {summary['current_value_usd']:.2f} USD | "
        f"P&L {summary['pnl_total_usd']:+.2f} ({format_pct_text(summary['pnl_total_pct'])}) | "
        f"Day {summary['pnl_daily_usd']:+.2f} | Month {summary['pnl_month_usd']:+.2f}"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="investment-tracker", description="Track stock and crypto positions.")
    parser.add_argument("--data", help="Portfolio JSON file")
    parser.add_argument("--log-level", help="Logging level (default: LOG_LEVEL or INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add", help="Add a position")
    add.add_argument("asset_type", choices=ASSET_TYPES)
    add.add_argument("ticker")
    add.add_argument("usd_invested", type=float)
    add.add_argument("buy_price", type=float)

    sell = sub.add_parser("sell", help="Record a sale of a held asset")
    sell.add_argument("asset_type", choices=ASSET_TYPES)
    sell.add_argument("ticker")
    sell.add_argument("usd_amount", type=float)
    sell.add_argument("price", type=float)

    sub.add_parser("list", help="List positions")

    delete = sub.add_parser("delete", help="Delete a position")
    delete.add_argument("position_id")

    refresh = sub.add_parser("refresh", help="Refresh quotes and show P&L")
    refresh.add_argument("--force", action="store_true", help="Fetch even if prices are fresh")
    refresh.add_argument("--workers", type=int, default=1, help="Assets refreshed in parallel")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the command line interface. Returns the process exit code."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    repository = open_repository(args.data)

    if args.command == "add":
        try:
            position = repository.add_position(args.asset_type, args.ticker, args.usd_invested, args.buy_price)
        except ValueError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 2
        print(f"{position['id']} {position['ticker']} amount={position['amount_held']}")
        return 0

    if args.command == "sell":
        try:
            position, entry = repository.add_entry(args.asset_type, args.ticker, "sell", args.usd_amount, args.price)
        except ValueError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 2
        if position is None:
            print(f"{entry['position_id']} {entry['ticker']} sold out")
        else:
            print(f"{position['id']} {position['ticker']} amount={position['amount_held']}")
        return 0

    if args.command == "list":
        for position in repository.list_positions():
            print(
                f"{position['id']} {position['asset_type']:<6} {position['ticker']:<10} "
                f"invested={position['usd_invested']} buy={position['buy_price']} amount={position['amount_held']}"
            )
        return 0

    if args.command == "delete":
        if not repository.delete_position(args.position_id):
            print(f"error: no position {args.position_id}", file=sys.stderr)
            return 1
        return 0

    try:
        provider = build_provider()
    except RuntimeError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    logger.info("Refreshing portfolio (force=%s, workers=%d)", args.force, args.workers)
    rows, summary = refresh_portfolio(repository, provider, force=args.force, max_workers=args.workers)
    for row in rows:
        print(format_row(row))
    print(format_summary(summary))
    return 0
