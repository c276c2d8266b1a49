"""Sales dashboard: the user's delivery requests with live unread badges."""

from __future__ import annotations

from typing import Any, Dict

import streamlit as st

from swaprunn.constants import STATUS_CANCELLED, STATUS_COMPLETED
from swaprunn.delivery_utils import sort_by_urgency, status_label, timeframe_label
from swaprunn.services.deliveries import cancel_delivery, list_deliveries_for_sales
from swaprunn.ui import go, unread_badge
from swaprunn.utils.supa import ServiceError

_CLOSED = {STATUS_CANCELLED, STATUS_COMPLETED}


def _render_card(client, delivery: Dict[str, Any], user_id: str, sales_id: str) -> None:
    with st.container(border=True):
        left, right = st.columns([3, 1])
        with left:
            vehicle = " ".join(
                str(delivery.get(k)) for k in ("year", "make", "model") if delivery.get(k)
            )
            st.markdown(f"**{vehicle or 'Vehicle'}** · VIN `{delivery.get('vin', '')}`")
            st.write(f"{delivery.get('pickup', '')} → {delivery.get('dropoff', '')}")
            when = timeframe_label(delivery.get("required_timeframe"), delivery.get("custom_date"))
            st.caption(" · ".join(p for p in (status_label(delivery.get("status")), when) if p))
        with right:
            if delivery.get("driver_id"):
                unread_badge(client, delivery["id"], user_id)
                if st.button("Chat", key=f"chat_{delivery['id']}"):
                    go("Chat", delivery_id=delivery["id"])
            if delivery.get("status") not in _CLOSED:
                if st.button("Cancel", key=f"cancel_{delivery['id']}"):
                    try:
                        cancel_delivery(client, delivery["id"], cancelled_by=sales_id)
                    except ServiceError as exc:
                        st.toast(f"Failed to cancel delivery: {exc}", icon="⚠️")
                    else:
                        st.toast("Delivery cancelled")
                        st.rerun()


def show_sales_dashboard(client, profile: Dict[str, Any], user_id: str) -> None:
    st.header("My deliveries")
    sales_id = profile["id"]
    try:
        deliveries = list_deliveries_for_sales(client, sales_id)
    except ServiceError as exc:
        st.error(f"Failed to load deliveries: {exc}")
        return

    open_rows = [d for d in deliveries if d.get("status") not in _CLOSED]
    closed_rows = [d for d in deliveries if d.get("status") in _CLOSED]

    if not open_rows:
        st.info("No active delivery requests.")
    for delivery in sort_by_urgency(open_rows):
        _render_card(client, delivery, user_id, sales_id)

    if closed_rows:
        with st.expander(f"History ({len(closed_rows)})"):
            for delivery in closed_rows:
                _render_card(client, delivery, user_id, sales_id)


__all__ = ["show_sales_dashboard"]
