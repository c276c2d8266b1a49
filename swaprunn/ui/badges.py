"""Live unread badges.

Each browser session owns the counters its badges start. ``begin_unread_run``
and ``end_unread_run`` bracket a full page run: counters the run did not
render are handed back to the runner, which shuts them down once no session
holds them. ``release_unread_watches`` does the same for everything at
sign-out.
"""
from __future__ import annotations

import logging
import uuid
from typing import Optional

import streamlit as st

from swaprunn.config import unread_refresh_seconds
from swaprunn.realtime import get_realtime_runner
from swaprunn.services.messages import count_unread
from swaprunn.supabase_client import current_session_tokens

_logger = logging.getLogger(__name__)

_OWNER_KEY = "unread__owner"
_RENDERED_KEY = "unread__rendered"


def _owner() -> str:
    return st.session_state.setdefault(_OWNER_KEY, uuid.uuid4().hex)


def begin_unread_run() -> None:
    st.session_state[_RENDERED_KEY] = set()


def end_unread_run() -> None:
    """Release the counters this session did not render on this run."""
    rendered = st.session_state.get(_RENDERED_KEY) or set()
    try:
        get_realtime_runner().retain(_owner(), rendered)
    except Exception as exc:
        _logger.warning("Could not release unused unread counters: %s", exc)


def release_unread_watches(user_id: Optional[str]) -> None:
    """Drop every live counter of this session and of ``user_id``."""
    st.session_state.pop(_RENDERED_KEY, None)
    try:
        runner = get_realtime_runner()
        runner.release_owner(_owner())
        if user_id:
            runner.release_user(user_id)
    except Exception as exc:
        _logger.warning("Could not release unread counters: %s", exc)


def _live_count(client, delivery_id: Optional[str], user_id: str) -> int:
    st.session_state.setdefault(_RENDERED_KEY, set()).add((delivery_id, user_id))
    try:
        runner = get_realtime_runner()
        tokens = current_session_tokens()
        if delivery_id is None:
            runner.watch_inbox(user_id, owner=_owner(), session=tokens)
        else:
            runner.watch_unread(delivery_id, user_id, owner=_owner(), session=tokens)
        return runner.unread_count(delivery_id, user_id)
    except Exception as exc:
        # No realtime feed: fall back to a plain count on each refresh.
        _logger.warning("Live unread counter unavailable: %s", exc)
        return count_unread(client, delivery_id, user_id)


def _label(count: int) -> str:
    return "1 unread" if count == 1 else f"{count} unread"


@st.fragment(run_every=unread_refresh_seconds())
def unread_badge(client, delivery_id: str, user_id: str) -> None:
    """Small badge with the live unread count for one conversation."""
    count = _live_count(client, delivery_id, user_id)
    if count:
        st.markdown(f":red-background[**{_label(count)}**]")
    else:
        st.caption("No unread messages")


@st.fragment(run_every=unread_refresh_seconds())
def inbox_badge(client, user_id: str) -> None:
    """Unread messages across every conversation, for the sidebar."""
    count = _live_count(client, None, user_id)
    if count:
        st.markdown(f"Messages :red-background[**{_label(count)}**]")
    else:
        st.caption("Messages: all caught up")


__all__ = [
    "unread_badge",
    "inbox_badge",
    "begin_unread_run",
    "end_unread_run",
    "release_unread_watches",
]
