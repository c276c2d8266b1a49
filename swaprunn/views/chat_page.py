"""Per-delivery chat between the sales user and the driver."""

from __future__ import annotations

import logging
from typing import Any, Dict

import streamlit as st

from swaprunn.config import unread_refresh_seconds
from swaprunn.delivery_utils import status_label
from swaprunn.services.deliveries import get_delivery
from swaprunn.services.messages import (
    list_messages,
    mark_read,
    resolve_recipient,
    send_message,
)
from swaprunn.ui import go
from swaprunn.utils.retry import is_network_error
from swaprunn.utils.supa import ServiceError

_logger = logging.getLogger(__name__)

_DRAFT_KEY = "chat__draft"


@st.fragment(run_every=unread_refresh_seconds())
def _history(client, delivery_id: str, user_id: str) -> None:
    try:
        messages = list_messages(client, delivery_id)
    except ServiceError as exc:
        st.error(f"Failed to load messages: {exc}")
        return
    if any(m.get("recipient_id") == user_id and not m.get("read") for m in messages):
        mark_read(client, delivery_id, user_id)
    if not messages:
        st.caption("No messages yet. Say hello!")
    for message in messages:
        role = "user" if message.get("sender_id") == user_id else "assistant"
        with st.chat_message(role):
            st.write(message.get("content", ""))
            st.caption(str(message.get("created_at", ""))[:16].replace("T", " "))


def _send(client, delivery: Dict[str, Any], user_id: str, text: str) -> None:
    recipient_id = resolve_recipient(client, delivery, user_id)
    try:
        send_message(
            client,
            delivery_id=delivery["id"],
            sender_id=user_id,
            recipient_id=recipient_id,
            content=text,
        )
    except ValueError as exc:
        st.toast(str(exc), icon="⚠️")
    except Exception as exc:
        _logger.error("Failed to send message: %s", exc)
        st.session_state[_DRAFT_KEY] = text
        if is_network_error(exc):
            st.toast(
                "Network error. Message not sent. Please check your connection and try again.",
                icon="⚠️",
            )
        else:
            st.toast(f"Failed to send message: {exc}", icon="⚠️")
    else:
        st.session_state.pop(_DRAFT_KEY, None)


def show_chat_page(client, profile: Dict[str, Any], user_id: str) -> None:
    delivery_id = st.session_state.get("chat_delivery_id")
    if not delivery_id:
        st.info("Pick a delivery from your dashboard to open its chat.")
        return
    try:
        delivery = get_delivery(client, delivery_id)
    except ServiceError as exc:
        st.error(f"Failed to load delivery: {exc}")
        return
    if not delivery:
        st.warning("Delivery not found.")
        return

    if st.button("← Back to dashboard"):
        go("Dashboard")

    st.header(f"{delivery.get('pickup', '')} → {delivery.get('dropoff', '')}")
    st.caption(f"{status_label(delivery.get('status'))} · VIN {delivery.get('vin', '')}")

    mark_read(client, delivery_id, user_id)
    _history(client, delivery_id, user_id)

    draft = st.session_state.get(_DRAFT_KEY)
    if draft:
        st.caption(f"Unsent: {draft}")
    text = st.chat_input("Type a message")
    if text:
        _send(client, delivery, user_id, text)
        st.rerun()


__all__ = ["show_chat_page"]
