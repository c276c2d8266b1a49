"""Driver dashboard: requests to answer, open requests to claim and the driver's own jobs."""

from __future__ import annotations

from typing import Any, Callable, Dict

import pandas as pd
import streamlit as st

from swaprunn.constants import STATUS_ACCEPTED, STATUS_ASSIGNED, STATUS_IN_PROGRESS
from swaprunn.delivery_utils import sort_by_urgency, status_label, timeframe_label
from swaprunn.services.deliveries import (
    accept_delivery,
    complete_delivery,
    decline_delivery,
    list_deliveries_for_driver,
    list_open_deliveries,
    list_requests_for_driver,
    start_delivery,
)
from swaprunn.services.drivers import set_availability
from swaprunn.ui import go, unread_badge
from swaprunn.utils.supa import ServiceError

_STARTABLE = (STATUS_ACCEPTED, STATUS_ASSIGNED)


def _open_table(rows) -> pd.DataFrame:
    df = pd.DataFrame(
        [
            {
                "When": timeframe_label(r.get("required_timeframe"), r.get("custom_date")),
                "Type": (r.get("service_type") or "delivery").title(),
                "Pickup": r.get("pickup", ""),
                "Dropoff": r.get("dropoff", ""),
                "VIN": r.get("vin", ""),
            }
            for r in rows
        ],
        columns=["When", "Type", "Pickup", "Dropoff", "VIN"],
    )
    return df


def _run_action(action: Callable[[], Any], ok_message: str) -> None:
    try:
        action()
    except ServiceError as exc:
        st.toast(str(exc), icon="⚠️")
    else:
        st.toast(ok_message)
        st.rerun()


def _accept(client, delivery_id: str, profile: Dict[str, Any], user_id: str) -> None:
    _run_action(
        lambda: accept_delivery(
            client,
            delivery_id,
            profile["id"],
            driver_user_id=user_id,
            driver_name=profile.get("name"),
        ),
        "Delivery accepted. Chat is open.",
    )


def _render_request(client, delivery: Dict[str, Any], profile: Dict[str, Any], user_id: str) -> None:
    with st.container(border=True):
        left, right = st.columns([3, 1])
        with left:
            st.markdown(f"**{delivery.get('pickup', '')} → {delivery.get('dropoff', '')}**")
            when = timeframe_label(delivery.get("required_timeframe"), delivery.get("custom_date"))
            st.caption(" · ".join(p for p in (when, f"VIN {delivery.get('vin', '')}") if p))
        with right:
            if st.button("Accept", key=f"req_accept_{delivery['id']}", type="primary"):
                _accept(client, delivery["id"], profile, user_id)
            if st.button("Decline", key=f"req_decline_{delivery['id']}"):
                _run_action(
                    lambda: decline_delivery(client, delivery["id"], profile["id"]),
                    "Request declined",
                )


def _render_job(client, delivery: Dict[str, Any], driver_id: str, user_id: str) -> None:
    with st.container(border=True):
        left, right = st.columns([3, 1])
        with left:
            st.markdown(f"**{delivery.get('pickup', '')} → {delivery.get('dropoff', '')}**")
            st.caption(f"{status_label(delivery.get('status'))} · VIN {delivery.get('vin', '')}")
        with right:
            unread_badge(client, delivery["id"], user_id)
            if st.button("Chat", key=f"chat_{delivery['id']}"):
                go("Chat", delivery_id=delivery["id"])
            status = delivery.get("status")
            if status in _STARTABLE and st.button("Start", key=f"start_{delivery['id']}"):
                _run_action(
                    lambda: start_delivery(client, delivery["id"], driver_id), "Delivery started"
                )
            if status == STATUS_IN_PROGRESS and st.button("Complete", key=f"done_{delivery['id']}"):
                _run_action(
                    lambda: complete_delivery(client, delivery["id"], driver_id),
                    "Delivery completed",
                )


def show_driver_dashboard(client, profile: Dict[str, Any], user_id: str) -> None:
    driver_id = profile["id"]
    st.header("Driver dashboard")

    available = st.toggle("Available for new requests", value=bool(profile.get("is_available")))
    if available != bool(profile.get("is_available")):
        try:
            set_availability(client, driver_id, available)
        except ServiceError as exc:
            st.toast(f"Failed to update availability: {exc}", icon="⚠️")
        else:
            profile["is_available"] = available
            st.toast(f"You are now {'available' if available else 'unavailable'}")

    try:
        mine = list_deliveries_for_driver(client, driver_id)
        requested = sort_by_urgency(list_requests_for_driver(client, driver_id))
        open_rows = sort_by_urgency(list_open_deliveries(client)) if available else []
    except ServiceError as exc:
        st.error(f"Failed to load deliveries: {exc}")
        return

    if requested:
        st.subheader(f"Requested for you ({len(requested)})")
        for delivery in requested:
            _render_request(client, delivery, profile, user_id)

    st.subheader("My jobs")
    active = [d for d in mine if d.get("status") in (*_STARTABLE, STATUS_IN_PROGRESS)]
    if not active:
        st.info("No active jobs.")
    for delivery in active:
        _render_job(client, delivery, driver_id, user_id)

    st.subheader("Open requests")
    if not open_rows:
        st.caption("Nothing to claim right now.")
        return
    st.dataframe(_open_table(open_rows), hide_index=True, use_container_width=True)
    choices = {f"{r.get('pickup', '')} → {r.get('dropoff', '')} ({r['id'][:8]})": r["id"] for r in open_rows}
    picked = st.selectbox("Request", list(choices), key="driver_open_pick")
    if picked and st.button("Accept request", type="primary"):
        _accept(client, choices[picked], profile, user_id)


__all__ = ["show_driver_dashboard"]
