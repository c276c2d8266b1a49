# -*- coding: utf-8 -*-
# file: swaprunn/app.py
"""Streamlit entry point: ``streamlit run swaprunn/app.py``."""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, Optional

# Streamlit runs this file as a script; make the project root importable.
_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

import streamlit as st

from swaprunn import __version__
from swaprunn.config import configure_logging
from swaprunn.constants import ROLE_DRIVER, ROLE_SALES
from swaprunn.login import login, logout
from swaprunn.views.chat_page import show_chat_page
from swaprunn.views.driver_dashboard import show_driver_dashboard
from swaprunn.views.sales_dashboard import show_sales_dashboard
from swaprunn.services.drivers import get_driver_by_user, get_sales_by_user
from swaprunn.supabase_client import current_user, current_user_id, get_client
from swaprunn.ui import begin_unread_run, end_unread_run, go, inbox_badge
from swaprunn.utils.supa import ServiceError

APP_TITLE = "SwapRunn"
APP_TAGLINE = "Dealer deliveries, on demand"

NAV_KEYS = ["Dashboard", "Chat"]
DASHBOARDS = {
    ROLE_DRIVER: show_driver_dashboard,
    ROLE_SALES: show_sales_dashboard,
}
PAGE_FUNCS = {
    "Chat": show_chat_page,
}


def _load_profile(client, user_id: str) -> Optional[Dict[str, Any]]:
    """Resolve whether the signed-in user is a driver or a sales user."""
    cached = st.session_state.get("profile")
    if cached and cached.get("user_id") == user_id:
        return cached
    driver = get_driver_by_user(client, user_id)
    if driver:
        profile = {**driver, "role": ROLE_DRIVER}
    else:
        sales = get_sales_by_user(client, user_id)
        profile = {**sales, "role": ROLE_SALES} if sales else None
    if profile:
        st.session_state["profile"] = profile
    return profile


def build_sidebar(client, current: str, profile: Dict[str, Any], user_id: str) -> None:
    with st.sidebar:
        st.title(APP_TITLE)
        st.caption(APP_TAGLINE)
        user = current_user() or {}
        st.write(f"{profile.get('name') or user.get('email', '')} · {profile['role']}")
        inbox_badge(client, user_id)
        for key in NAV_KEYS:
            if st.button(key, key=f"nav_{key}", type="primary" if key == current else "secondary"):
                go(key)
        st.divider()
        if st.button("Sign out", key="nav_sign_out"):
            logout()
        st.caption(f"v{__version__}")


def main() -> None:
    configure_logging()
    st.set_page_config(page_title=APP_TITLE, layout="wide", initial_sidebar_state="expanded")

    login(APP_TITLE)

    client = get_client()
    user_id = current_user_id()
    if not user_id:
        st.error("Signed in without a user id. Please sign out and try again.")
        st.stop()

    try:
        profile = _load_profile(client, user_id)
    except ServiceError as exc:
        st.error(f"Failed to load your profile: {exc}")
        st.stop()
    if not profile:
        st.warning("No driver or sales profile is linked to this account yet.")
        if st.button("Sign out"):
            logout()
        st.stop()

    current = st.session_state.setdefault("current_page", NAV_KEYS[0])
    if current not in NAV_KEYS:
        current = st.session_state["current_page"] = NAV_KEYS[0]

    begin_unread_run()
    build_sidebar(client, current, profile, user_id)

    page_func = PAGE_FUNCS.get(current) or DASHBOARDS[profile["role"]]
    page_func(client, profile, user_id)
    end_unread_run()


if __name__ == "__main__":
    main()
