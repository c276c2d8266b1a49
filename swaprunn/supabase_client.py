"""Supabase auth/session helpers for the SwapRunn Streamlit app."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import streamlit as st
from supabase import AuthApiError, AuthError

from swaprunn.utils.supa import SupabaseConfigError, get_client as _get_cached_client

__all__ = [
    "get_client",
    "sign_in",
    "sign_out",
    "session_value",
    "current_user",
    "current_user_id",
    "current_session_tokens",
]

_logger = logging.getLogger(__name__)

_AUTH_STATE_KEY = "auth"
_SESSION_STATE_KEY = "supabase_session"
_EXPIRED_MSG = "Your session expired. Please sign in again."


def session_value(session: Any, key: str) -> Any:
    """Read ``key`` from a Supabase session object or a plain dict."""
    if session is None:
        return None
    if hasattr(session, key):
        return getattr(session, key)
    if isinstance(session, dict):
        return session.get(key)
    return None


def _ensure_auth_state() -> Dict[str, Any]:
    auth = st.session_state.setdefault(_AUTH_STATE_KEY, {})
    auth.setdefault("authenticated", False)
    auth.setdefault("user", None)
    return auth


def _serialize_user(user: Any) -> Optional[Dict[str, Any]]:
    """Keep the handful of user fields the pages need as a plain dict."""
    if user is None:
        return None
    if isinstance(user, dict):
        return user
    dump = getattr(user, "model_dump", None)
    if callable(dump):
        data = dump()
        if isinstance(data, dict):
            return data
    snapshot: Dict[str, Any] = {}
    for attr in ("id", "email", "user_metadata", "role"):
        value = getattr(user, attr, None)
        if value is not None:
            snapshot[attr] = value
    return snapshot or None


def _store_session(session: Any, user: Any | None = None) -> None:
    access_token = session_value(session, "access_token")
    refresh_token = session_value(session, "refresh_token")
    if access_token and refresh_token:
        st.session_state[_SESSION_STATE_KEY] = {
            "access_token": access_token,
            "refresh_token": refresh_token,
        }
    auth = _ensure_auth_state()
    auth["authenticated"] = True
    auth["user"] = _serialize_user(user or session_value(session, "user"))
    auth.pop("last_error", None)


def _clear_session_state(reason: Optional[str] = None) -> None:
    had_tokens = st.session_state.pop(_SESSION_STATE_KEY, None) is not None
    auth = _ensure_auth_state()
    auth["authenticated"] = False
    auth["user"] = None
    if reason and had_tokens:
        auth["last_error"] = reason
    else:
        auth.pop("last_error", None)


def _apply_saved_session(client) -> None:
    """Sync the shared client's auth with the tokens stored for this browser session."""
    stored = st.session_state.get(_SESSION_STATE_KEY)
    if not stored:
        _clear_session_state()
        return
    try:
        current = client.auth.get_session()
    except AuthApiError as exc:
        _logger.warning("Supabase get_session failed: %s", exc)
        _clear_session_state(_EXPIRED_MSG)
        return
    if session_value(current, "access_token") == stored.get("access_token"):
        _store_session(current)
        return
    try:
        response = client.auth.set_session(stored["access_token"], stored["refresh_token"])
    except AuthError as exc:
        _logger.warning("Supabase set_session failed: %s", exc)
        _clear_session_state(_EXPIRED_MSG)
        return
    session = getattr(response, "session", None)
    if session and session_value(session, "access_token"):
        _store_session(session, getattr(response, "user", None))
    else:
        _clear_session_state(_EXPIRED_MSG)


def get_client():
    """Return the shared Supabase client with this browser session's tokens applied."""
    try:
        client = _get_cached_client()
    except SupabaseConfigError as exc:
        st.error(str(exc))
        st.stop()
        raise
    _apply_saved_session(client)
    return client


def sign_in(email: str, password: str):
    """Authenticate with Supabase email/password and cache the session tokens."""
    response = get_client().auth.sign_in_with_password({"email": email, "password": password})
    session = getattr(response, "session", None)
    if session and session_value(session, "access_token"):
        _store_session(session, getattr(response, "user", None))
    else:
        _clear_session_state()
    return response


def sign_out() -> None:
    client = get_client()
    try:
        client.auth.sign_out()
    finally:
        _clear_session_state()


def current_user() -> Optional[Dict[str, Any]]:
    return _ensure_auth_state().get("user")


def current_user_id() -> Optional[str]:
    user = current_user() or {}
    user_id = user.get("id")
    return str(user_id) if user_id else None


def current_session_tokens() -> Optional[Dict[str, str]]:
    """Access/refresh tokens of this browser session, for the realtime client."""
    stored = st.session_state.get(_SESSION_STATE_KEY)
    return dict(stored) if stored else None
