from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from postgrest.exceptions import APIError

from swaprunn.db_tables import DRIVER_PREFERENCES, DRIVERS, SALES
from swaprunn.utils.supa import ServiceError, first_row, format_api_error

__all__ = [
    "get_driver_by_user",
    "get_sales_by_user",
    "set_availability",
    "submit_driver_rating",
]

DRIVER_FIELDS = "id, user_id, name, email, phone, vehicle_type, radius, is_available"
SALES_FIELDS = "id, user_id, dealer_id, name, email, phone, status"


def _one(client, table: str, fields: str, column: str, value: str, context: str):
    if not value:
        return None
    try:
        response = client.table(table).select(fields).eq(column, value).limit(1).execute()
    except APIError as exc:
        raise ServiceError(format_api_error(context, exc)) from exc
    return first_row(response)


def get_driver_by_user(client, user_id: str) -> Optional[Dict[str, Any]]:
    return _one(client, DRIVERS, DRIVER_FIELDS, "user_id", user_id, "get_driver_by_user")


def get_sales_by_user(client, user_id: str) -> Optional[Dict[str, Any]]:
    return _one(client, SALES, SALES_FIELDS, "user_id", user_id, "get_sales_by_user")


def set_availability(client, driver_id: str, available: bool) -> None:
    try:
        client.table(DRIVERS).update({"is_available": bool(available)}).eq("id", driver_id).execute()
    except APIError as exc:
        raise ServiceError(format_api_error("set_availability", exc)) from exc


def submit_driver_rating(
    client,
    *,
    user_id: str,
    driver_id: str,
    dealer_id: str,
    rating: int,
) -> None:
    """Store how much a sales user likes working with a driver.

    Updates the existing preference row for the (user, driver, dealer) triple
    or creates one with ``use_count = 1``.
    """
    if not (1 <= int(rating) <= 5):
        raise ValueError("rating must be between 1 and 5")
    if not user_id or not driver_id or not dealer_id:
        raise ValueError("user_id, driver_id and dealer_id are required")

    try:
        existing = first_row(
            client.table(DRIVER_PREFERENCES)
            .select("id")
            .eq("user_id", user_id)
            .eq("driver_id", driver_id)
            .eq("dealer_id", dealer_id)
            .limit(1)
            .execute()
        )
        if existing:
            (
                client.table(DRIVER_PREFERENCES)
                .update(
                    {
                        "preference_level": int(rating),
                        "updated_at": datetime.now(timezone.utc).isoformat(),
                    }
                )
                .eq("id", existing["id"])
                .execute()
            )
        else:
            client.table(DRIVER_PREFERENCES).insert(
                {
                    "user_id": user_id,
                    "driver_id": driver_id,
                    "dealer_id": dealer_id,
                    "preference_level": int(rating),
                    "use_count": 1,
                }
            ).execute()
    except APIError as exc:
        raise ServiceError(format_api_error("submit_driver_rating", exc)) from exc
