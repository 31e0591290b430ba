"""Buy/sell entries behind each position, folded with the average cost method."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, TypedDict

from investment_tracker.config.constants import AMOUNT_DECIMALS, AMOUNT_EPSILON, ENTRY_TYPES
from investment_tracker.models.core import Entry


class EntrySummary(TypedDict):
    net_amount: float
    net_cost_usd: float
    first_created_at: str
    fallback_price: float


def normalize_entry_type(entry_type: Any) -> str:
    if entry_type not in ENTRY_TYPES:
        raise ValueError("Entry type must be one of: " + ", ".join(ENTRY_TYPES) + ".")
    return entry_type


def entry_sort_key(entry: Mapping[str, Any]):
    """Oldest first; on equal timestamps buys go before sells."""
    return (entry.get("created_at", ""), 0 if entry.get("entry_type") == "buy" else 1, entry.get("id", ""))


def sort_entries(entries: Sequence[Entry]) -> List[Entry]:
    return sorted(entries, key=entry_sort_key)


def summarize_entries(entries: Sequence[Entry]) -> Optional[EntrySummary]:
    """
    Fold entries into net amount and net cost.

    A sell removes its amount at the running average cost, capped at what is
    held. Whenever the held amount drops to zero the cost resets too.

    Returns:
        None when there are no entries.
    """
    if not entries:
        return None
    ordered = sort_entries(entries)

    net_amount = 0.0
    net_cost = 0.0
    for entry in ordered:
        if entry["entry_type"] == "buy":
            net_amount += entry["amount"]
            net_cost += entry["usd_amount"]
            continue
        if net_amount <= AMOUNT_EPSILON:
            net_amount, net_cost = 0.0, 0.0
            continue
        sell_amount = min(entry["amount"], net_amount)
        avg_cost = net_cost / net_amount
        net_amount -= sell_amount
        net_cost -= avg_cost * sell_amount
        if net_amount <= AMOUNT_EPSILON:
            net_amount, net_cost = 0.0, 0.0

    return {
        "net_amount": round(max(0.0, net_amount), AMOUNT_DECIMALS),
        "net_cost_usd": round(max(0.0, net_cost), AMOUNT_DECIMALS),
        "first_created_at": ordered[0]["created_at"],
        "fallback_price": ordered[-1]["price"],
    }


def available_amount(entries: Sequence[Entry]) -> float:
    summary = summarize_entries(entries)
    return summary["net_amount"] if summary else 0.0


def check_sell(entries: Sequence[Entry], amount: float) -> None:
    """Raise ValueError when a sell of amount is larger than what entries hold."""
    held = available_amount(entries)
    if held <= AMOUNT_EPSILON:
        raise ValueError("Nothing is held for this asset, so it cannot be sold.")
    if amount > held + AMOUNT_EPSILON:
        raise ValueError(f"Cannot sell {amount} when only {held} is held.")


def group_by_asset(entries: Sequence[Entry], key_func) -> Dict[str, List[Entry]]:
    """Group entries by key_func(asset_type, ticker), keeping first-seen key order."""
    groups: Dict[str, List[Entry]] = {}
    for entry in entries:
        groups.setdefault(key_func(entry["asset_type"], entry["ticker"]), []).append(entry)
    return groups
