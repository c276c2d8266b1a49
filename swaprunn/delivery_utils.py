"""Formatting helpers for delivery cards: timeframes and addresses."""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

_TIMEFRAME_LABELS = {
    "tomorrow": "Tomorrow",
    "next_few_days": "Next Few Days",
    "next_week": "Next Week",
}
_TIMEFRAME_URGENCY = {
    "tomorrow": 1,
    "next_few_days": 2,
    "next_week": 3,
    "custom": 4,
}
NO_URGENCY = 999

_ZIP_RE = re.compile(r"\b(\d{5}(?:-\d{4})?)\b")
_STATE_RE = re.compile(r"\b([A-Z]{2})\b")

STATUS_LABELS = {
    "pending": "Requested",
    "pending_driver_acceptance": "Awaiting driver",
    "accepted": "Accepted",
    "assigned": "Assigned",
    "in_progress": "In Progress",
    "completed": "Completed",
    "cancelled": "Cancelled",
}


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except ValueError:
        return None


def timeframe_label(timeframe: Optional[str], custom_date: Any = None) -> str:
    if not timeframe:
        return ""
    if timeframe == "custom":
        parsed = _parse_date(custom_date)
        if parsed is None:
            return "Custom Date"
        return f"{parsed:%b} {parsed.day}, {parsed.year}"
    return _TIMEFRAME_LABELS.get(timeframe, "")


def timeframe_urgency(timeframe: Optional[str]) -> int:
    """Lower is more urgent; unknown or missing timeframes sort last."""
    return _TIMEFRAME_URGENCY.get(timeframe or "", NO_URGENCY)


def sort_by_urgency(deliveries: Iterable[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    """Most urgent first, newest first within the same urgency."""
    rows = sorted(deliveries, key=lambda d: str(d.get("created_at") or ""), reverse=True)
    rows.sort(key=lambda d: timeframe_urgency(d.get("required_timeframe")))
    return rows


def status_label(status: Optional[str]) -> str:
    return STATUS_LABELS.get(status or "", (status or "").replace("_", " ").title())


def format_address(address: Mapping[str, Any]) -> str:
    """``street, city, ST zip`` with empty parts dropped."""
    street = (address.get("street") or "").strip()
    city = (address.get("city") or "").strip()
    state = (address.get("state") or "").strip()
    zip_code = (address.get("zip") or "").strip()
    city_state = ", ".join(p for p in (city, state) if p)
    tail = " ".join(p for p in (city_state, zip_code) if p)
    return ", ".join(p for p in (street, tail) if p)


def parse_address(full_address: str) -> Dict[str, str]:
    """Best-effort split of a one-line US address into its fields."""
    if not full_address or not full_address.strip():
        return {}
    remaining = full_address.strip()

    zip_code = ""
    match = _ZIP_RE.search(remaining)
    if match:
        zip_code = match.group(1)
        remaining = remaining.replace(match.group(0), "", 1).strip()

    state = ""
    match = _STATE_RE.search(remaining)
    if match:
        state = match.group(1)
        remaining = remaining.replace(match.group(0), "", 1).strip()

    parts = [p.strip() for p in remaining.split(",") if p.strip()]
    street, city = "", ""
    if len(parts) >= 2:
        city = parts[-1]
        street = ", ".join(parts[:-1])
    elif parts:
        street = parts[0]

    return {"street": street, "city": city, "state": state, "zip": zip_code}


__all__ = [
    "timeframe_label",
    "timeframe_urgency",
    "sort_by_urgency",
    "status_label",
    "format_address",
    "parse_address",
]
