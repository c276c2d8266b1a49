"""Chat messages for a delivery conversation.

Every function takes the Supabase client as its first argument so pages can
pass the session-bound client and tests can pass an in-memory fake.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from postgrest.exceptions import APIError

from swaprunn.db_tables import DEALERS, DRIVERS, MESSAGES, SALES
from swaprunn.utils.retry import retry_with_backoff
from swaprunn.utils.supa import ServiceError, first_row, format_api_error

__all__ = [
    "list_messages",
    "send_message",
    "mark_read",
    "count_unread",
    "resolve_recipient",
    "party_user_id",
]

_logger = logging.getLogger(__name__)

MESSAGE_FIELDS = "id, delivery_id, sender_id, recipient_id, content, read, created_at"
MAX_MESSAGE_LENGTH = 2000


def list_messages(client, delivery_id: str) -> List[Dict[str, Any]]:
    if not delivery_id:
        return []
    try:
        response = (
            client.table(MESSAGES)
            .select(MESSAGE_FIELDS)
            .eq("delivery_id", delivery_id)
            .order("created_at")
            .execute()
        )
    except APIError as exc:
        raise ServiceError(format_api_error("list_messages", exc)) from exc
    return response.data or []


def send_message(
    client,
    *,
    delivery_id: str,
    sender_id: str,
    recipient_id: Optional[str],
    content: str,
) -> Dict[str, Any]:
    """Insert a chat message and return the stored row.

    Network failures are retried three times with exponential backoff.
    """
    text = (content or "").strip()
    if not text:
        raise ValueError("Message cannot be empty")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValueError(f"Message must be at most {MAX_MESSAGE_LENGTH} characters")
    if not delivery_id or not sender_id:
        raise ValueError("delivery_id and sender_id are required")
    if not recipient_id:
        raise ValueError("No recipient available for this delivery")

    payload = {
        "delivery_id": delivery_id,
        "sender_id": sender_id,
        "recipient_id": recipient_id,
        "content": text,
    }

    def _insert():
        return client.table(MESSAGES).insert(payload).execute()

    try:
        response = retry_with_backoff(_insert, 3, 1.0)
    except APIError as exc:
        raise ServiceError(format_api_error("send_message", exc)) from exc

    row = first_row(response)
    if not row:
        raise ServiceError("Supabase did not return the sent message")
    return row


def mark_read(client, delivery_id: str, recipient_id: str) -> None:
    """Flag every unread message for the viewer in this conversation as read."""
    if not delivery_id or not recipient_id:
        return
    try:
        (
            client.table(MESSAGES)
            .update({"read": True})
            .eq("delivery_id", delivery_id)
            .eq("recipient_id", recipient_id)
            .eq("read", False)
            .execute()
        )
    except Exception as exc:
        _logger.error("Failed to mark messages as read: %s", exc)


def count_unread(client, delivery_id: Optional[str], recipient_id: Optional[str]) -> int:
    """One-shot unread count; ``delivery_id=None`` counts the whole inbox."""
    if not recipient_id:
        return 0
    try:
        query = client.table(MESSAGES).select("*", count="exact", head=True)
        if delivery_id:
            query = query.eq("delivery_id", delivery_id)
        response = query.eq("recipient_id", recipient_id).eq("read", False).execute()
    except Exception as exc:
        _logger.error("Error loading unread count: %s", exc)
        return 0
    count = getattr(response, "count", None)
    return int(count) if count else 0


_PARTY_TABLES = (
    ("driver_id", DRIVERS),
    ("sales_id", SALES),
    ("dealer_id", DEALERS),
)


def party_user_id(client, table: str, row_id: str) -> Optional[str]:
    """Auth user id behind a drivers/sales/dealers row, or None."""
    try:
        response = (
            client.table(table).select("user_id").eq("id", row_id).limit(1).execute()
        )
    except APIError as exc:
        _logger.warning("Recipient lookup in %s failed: %s", table, exc)
        return None
    row = first_row(response) or {}
    return row.get("user_id")


def resolve_recipient(client, delivery: Mapping[str, Any], user_id: str) -> Optional[str]:
    """Return the user id on the other side of a delivery chat.

    The assigned driver is tried first, then the requesting sales user, then
    the dealer account; the first one that is not the viewer wins.
    """
    if not delivery:
        return None
    for column, table in _PARTY_TABLES:
        row_id = delivery.get(column)
        if not row_id:
            continue
        other = party_user_id(client, table, row_id)
        if other and other != user_id:
            return other
    return None
