"""Service layer for delivery requests.

Sales users create and cancel requests; drivers claim, start and complete
them. Status changes are filtered on the expected current state so two
drivers racing for the same request cannot both win.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from postgrest.exceptions import APIError

from swaprunn.constants import (
    SERVICE_TYPES,
    STATUS_ACCEPTED,
    STATUS_ASSIGNED,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    STATUS_PENDING_DRIVER,
    TIMEFRAMES,
)
from swaprunn.db_tables import DEALERS, DELIVERIES, NOTIFICATIONS, SALES
from swaprunn.services.messages import party_user_id, send_message
from swaprunn.utils.supa import ServiceError, first_row, format_api_error

__all__ = [
    "DeliveryUnavailableError",
    "list_deliveries_for_sales",
    "list_open_deliveries",
    "list_requests_for_driver",
    "list_deliveries_for_driver",
    "get_delivery",
    "create_delivery",
    "accept_delivery",
    "announce_acceptance",
    "decline_delivery",
    "start_delivery",
    "complete_delivery",
    "cancel_delivery",
]

_logger = logging.getLogger(__name__)

DELIVERY_FIELDS = (
    "id, dealer_id, driver_id, sales_id, pickup, dropoff, vin, notes, status, "
    "year, make, model, service_type, required_timeframe, custom_date, "
    "accepted_at, started_at, completed_at, cancelled_at, chat_activated_at, "
    "created_at, updated_at"
)

_CREATE_KEYS = {
    "dealer_id",
    "sales_id",
    "driver_id",
    "pickup",
    "dropoff",
    "vin",
    "notes",
    "year",
    "make",
    "model",
    "transmission",
    "service_type",
    "has_trade",
    "requires_second_driver",
    "required_timeframe",
    "custom_date",
}
_REQUIRED_KEYS = ("dealer_id", "pickup", "dropoff", "vin")


class DeliveryUnavailableError(ServiceError):
    """Raised when a status change matched no row (already claimed or moved on)."""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _select(query, context: str) -> List[Dict[str, Any]]:
    try:
        response = query.execute()
    except APIError as exc:
        raise ServiceError(format_api_error(context, exc)) from exc
    return response.data or []


def list_deliveries_for_sales(client, sales_id: str) -> List[Dict[str, Any]]:
    if not sales_id:
        return []
    query = (
        client.table(DELIVERIES)
        .select(DELIVERY_FIELDS)
        .eq("sales_id", sales_id)
        .order("created_at", desc=True)
    )
    return _select(query, "list_deliveries_for_sales")


def list_open_deliveries(client) -> List[Dict[str, Any]]:
    """Pending requests nobody has claimed yet."""
    query = (
        client.table(DELIVERIES)
        .select(DELIVERY_FIELDS)
        .eq("status", STATUS_PENDING)
        .is_("driver_id", "null")
        .order("created_at", desc=True)
    )
    return _select(query, "list_open_deliveries")


def list_requests_for_driver(client, driver_id: str) -> List[Dict[str, Any]]:
    """Requests a sales user addressed to this driver, awaiting accept/decline."""
    if not driver_id:
        return []
    query = (
        client.table(DELIVERIES)
        .select(DELIVERY_FIELDS)
        .eq("driver_id", driver_id)
        .eq("status", STATUS_PENDING_DRIVER)
        .order("created_at", desc=True)
    )
    return _select(query, "list_requests_for_driver")


def list_deliveries_for_driver(client, driver_id: str) -> List[Dict[str, Any]]:
    if not driver_id:
        return []
    query = (
        client.table(DELIVERIES)
        .select(DELIVERY_FIELDS)
        .eq("driver_id", driver_id)
        .order("created_at", desc=True)
    )
    return _select(query, "list_deliveries_for_driver")


def get_delivery(client, delivery_id: str) -> Optional[Dict[str, Any]]:
    if not delivery_id:
        return None
    query = client.table(DELIVERIES).select(DELIVERY_FIELDS).eq("id", delivery_id).limit(1)
    rows = _select(query, "get_delivery")
    return rows[0] if rows else None


def _clean_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    clean: Dict[str, Any] = {}
    for key in _CREATE_KEYS:
        value = payload.get(key)
        if isinstance(value, str):
            value = value.strip()
        if value in (None, ""):
            continue
        clean[key] = value

    missing = [key for key in _REQUIRED_KEYS if not clean.get(key)]
    if missing:
        raise ValueError(f"Missing required delivery fields: {', '.join(missing)}")

    clean["vin"] = str(clean["vin"]).upper()
    service_type = clean.setdefault("service_type", "delivery")
    if service_type not in SERVICE_TYPES:
        raise ValueError(f"Unknown service type: {service_type}")
    timeframe = clean.get("required_timeframe")
    if timeframe is not None and timeframe not in TIMEFRAMES:
        raise ValueError(f"Unknown timeframe: {timeframe}")
    if timeframe == "custom" and not clean.get("custom_date"):
        raise ValueError("custom_date is required for a custom timeframe")
    return clean


def create_delivery(client, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Insert a delivery request. A pre-selected driver must accept it first."""
    clean = _clean_payload(payload)
    clean["status"] = STATUS_PENDING_DRIVER if clean.get("driver_id") else STATUS_PENDING
    try:
        response = client.table(DELIVERIES).insert(clean).execute()
    except APIError as exc:
        raise ServiceError(format_api_error("create_delivery", exc)) from exc
    row = first_row(response)
    if not row:
        raise ServiceError("Supabase did not return the created delivery")
    return row


def _update(client, delivery_id: str, patch: Dict[str, Any], filters: Iterable, context: str):
    query = client.table(DELIVERIES).update(patch).eq("id", delivery_id)
    for op, column, value in filters:
        query = getattr(query, op)(column, value)
    try:
        response = query.execute()
    except APIError as exc:
        raise ServiceError(format_api_error(context, exc)) from exc
    return first_row(response)


def accept_delivery(
    client,
    delivery_id: str,
    driver_id: str,
    *,
    driver_user_id: Optional[str] = None,
    driver_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Claim a delivery for ``driver_id``.

    A request addressed to this driver is accepted first; otherwise an
    unassigned pending request is claimed. With ``driver_user_id`` the chat
    is opened with a welcome message and the dealer and sales users are
    notified.
    """
    if not delivery_id or not driver_id:
        raise ValueError("delivery_id and driver_id are required")
    now = _now_iso()
    patch = {"status": STATUS_ACCEPTED, "chat_activated_at": now, "accepted_at": now}

    row = _update(
        client,
        delivery_id,
        patch,
        [("eq", "driver_id", driver_id), ("eq", "status", STATUS_PENDING_DRIVER)],
        "accept_delivery",
    )
    if not row:
        row = _update(
            client,
            delivery_id,
            {**patch, "driver_id": driver_id},
            [("is_", "driver_id", "null"), ("eq", "status", STATUS_PENDING)],
            "accept_delivery",
        )
    if not row:
        raise DeliveryUnavailableError("This delivery is no longer available")
    _logger.info("Driver %s accepted delivery %s", driver_id, delivery_id)
    if driver_user_id:
        announce_acceptance(client, row, driver_user_id, driver_name)
    return row


def announce_acceptance(
    client,
    delivery: Dict[str, Any],
    driver_user_id: str,
    driver_name: Optional[str] = None,
) -> None:
    """Open the chat and notify the requesting side. Failures are only logged."""
    name = driver_name or "Your driver"
    delivery_id = delivery["id"]
    dealer_user = party_user_id(client, DEALERS, delivery["dealer_id"]) if delivery.get("dealer_id") else None
    sales_user = party_user_id(client, SALES, delivery["sales_id"]) if delivery.get("sales_id") else None

    recipient_id = sales_user or dealer_user
    if recipient_id:
        try:
            send_message(
                client,
                delivery_id=delivery_id,
                sender_id=driver_user_id,
                recipient_id=recipient_id,
                content=(
                    f"Chat activated! Driver {name} has accepted this delivery. You can now "
                    "coordinate the pickup schedule and any other details."
                ),
            )
        except (ServiceError, ValueError) as exc:
            _logger.error("Failed to send welcome message for %s: %s", delivery_id, exc)

    notifications = []
    if dealer_user:
        notifications.append(
            _accepted_notification(dealer_user, delivery_id, f"{name} has accepted a delivery request.")
        )
    if sales_user and sales_user != dealer_user:
        notifications.append(
            _accepted_notification(sales_user, delivery_id, f"{name} has accepted your delivery request.")
        )
    if not notifications:
        return
    try:
        client.table(NOTIFICATIONS).insert(notifications).execute()
    except APIError as exc:
        _logger.error(format_api_error("announce_acceptance", exc))


def _accepted_notification(user_id: str, delivery_id: str, message: str) -> Dict[str, Any]:
    return {
        "user_id": user_id,
        "delivery_id": delivery_id,
        "type": "delivery_accepted",
        "title": "Delivery Accepted",
        "message": message,
        "read": False,
    }


def decline_delivery(client, delivery_id: str, driver_id: str) -> Dict[str, Any]:
    """Hand a request addressed to this driver back to the open pool."""
    row = _update(
        client,
        delivery_id,
        {"driver_id": None, "status": STATUS_PENDING},
        [("eq", "driver_id", driver_id)],
        "decline_delivery",
    )
    if not row:
        raise DeliveryUnavailableError("Delivery is not assigned to this driver")
    return row


def start_delivery(client, delivery_id: str, driver_id: str) -> Dict[str, Any]:
    row = _update(
        client,
        delivery_id,
        {"status": STATUS_IN_PROGRESS, "started_at": _now_iso()},
        [("eq", "driver_id", driver_id), ("in_", "status", [STATUS_ACCEPTED, STATUS_ASSIGNED])],
        "start_delivery",
    )
    if not row:
        raise DeliveryUnavailableError("Only accepted or assigned deliveries can be started")
    return row


def complete_delivery(client, delivery_id: str, driver_id: str) -> Dict[str, Any]:
    row = _update(
        client,
        delivery_id,
        {"status": STATUS_COMPLETED, "completed_at": _now_iso()},
        [("eq", "driver_id", driver_id), ("eq", "status", STATUS_IN_PROGRESS)],
        "complete_delivery",
    )
    if not row:
        raise DeliveryUnavailableError("Only deliveries in progress can be completed")
    return row


def cancel_delivery(client, delivery_id: str, cancelled_by: Optional[str] = None) -> Dict[str, Any]:
    patch: Dict[str, Any] = {"status": STATUS_CANCELLED, "cancelled_at": _now_iso()}
    if cancelled_by:
        patch["cancelled_by"] = cancelled_by
    row = _update(
        client,
        delivery_id,
        patch,
        [("neq", "status", STATUS_COMPLETED)],
        "cancel_delivery",
    )
    if not row:
        raise DeliveryUnavailableError("Completed deliveries cannot be cancelled")
    return row
