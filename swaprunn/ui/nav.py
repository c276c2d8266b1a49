"""Tiny navigation helper for SwapRunn pages."""

from typing import Optional

import streamlit as st


def go(page: str, *, delivery_id: Optional[str] = None) -> None:
    """Switch to the given page by updating session state and forcing a rerun."""
    st.session_state["current_page"] = page
    if delivery_id is not None:
        st.session_state["chat_delivery_id"] = delivery_id
    st.rerun()


__all__ = ["go"]
