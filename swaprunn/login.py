"""Streamlit authentication gate backed by Supabase email/password auth."""

from __future__ import annotations

import logging

import streamlit as st
from supabase import AuthApiError, AuthError

from swaprunn.supabase_client import (
    current_user_id,
    get_client,
    session_value,
    sign_in as supabase_sign_in,
    sign_out as supabase_sign_out,
)
from swaprunn.ui.badges import release_unread_watches

_logger = logging.getLogger(__name__)

_LAST_EMAIL_KEY = "login__last_email"
_FORM_KEY = "login_form"


def logout() -> None:
    """Sign out of Supabase after releasing this user's live counters."""
    release_unread_watches(current_user_id())
    try:
        supabase_sign_out()
    except Exception as exc:  # pragma: no cover - UI cleanup path
        _logger.warning("Supabase sign_out failed: %s", exc)
    st.session_state.pop("profile", None)
    st.rerun()


def _has_session(client) -> bool:
    auth_state = st.session_state.setdefault("auth", {"authenticated": False, "user": None})
    try:
        session = client.auth.get_session()
    except AuthApiError as exc:
        _logger.warning("Supabase get_session API error: %s", exc)
        auth_state["last_error"] = "Your session has expired. Please sign in again."
        return False
    except AuthError as exc:
        _logger.warning("Supabase get_session auth error: %s", exc)
        auth_state["last_error"] = "Authentication error when restoring your session. Please sign in again."
        return False
    return bool(session and session_value(session, "access_token") and auth_state.get("authenticated"))


def login(title: str = "SwapRunn") -> None:
    """Render the sign-in form and stop the script until the user is authenticated."""

    if _has_session(get_client()):
        return

    last_error = st.session_state.get("auth", {}).pop("last_error", None)

    with st.form(_FORM_KEY, clear_on_submit=False):
        st.subheader(title)
        st.caption("Sign in with your dealership or driver account.")
        email = st.text_input(
            "Email",
            value=st.session_state.get(_LAST_EMAIL_KEY, ""),
            autocomplete="email",
            placeholder="you@example.com",
        )
        password = st.text_input(
            "Password",
            type="password",
            autocomplete="current-password",
        )
        submitted = st.form_submit_button("Sign in", type="primary")

    if last_error:
        st.warning(last_error)

    if submitted:
        email = email.strip()
        st.session_state[_LAST_EMAIL_KEY] = email
        if not email or not password:
            st.warning("Email and password are required.")
            st.stop()
        try:
            response = supabase_sign_in(email=email, password=password)
        except AuthApiError as exc:
            _logger.info("Supabase sign_in rejected: %s", exc)
            st.error("Invalid email or password. Please try again.")
            st.stop()
        except AuthError as exc:
            _logger.warning("Supabase sign_in auth error: %s", exc)
            st.error("Authentication failed. Please try again in a moment.")
            st.stop()
        except Exception as exc:  # pragma: no cover - unexpected runtime failures
            _logger.exception("Supabase sign_in unexpected error: %s", exc)
            st.error("Unexpected error during sign in. Please retry.")
            st.stop()

        session = getattr(response, "session", None)
        if not session or not session_value(session, "access_token"):
            st.error("Supabase did not return a valid session. Please try again.")
            st.stop()
        st.rerun()

    st.stop()


__all__ = ["login", "logout"]
