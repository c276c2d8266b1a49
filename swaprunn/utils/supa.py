from __future__ import annotations
from typing import Any, Dict, Optional
from functools import lru_cache

import httpx

try:
    import streamlit as st
except Exception:  # pragma: no cover - allow headless usage (tests / CLI)
    st = None

from postgrest.exceptions import APIError
from supabase import (
    AsyncClient,
    Client,
    ClientOptions,
    SupabaseException,
    acreate_client,
    create_client,
)

from swaprunn.config import read_supabase_config


class SupabaseConfigError(RuntimeError):
    """Raised when Supabase credentials are missing from secrets or env."""


class SupabaseConnectionError(RuntimeError):
    """Raised when the client cannot reach Supabase within the timeout window."""


class ServiceError(RuntimeError):
    """Raised by the service layer when a Supabase call fails."""


_MISSING_CONFIG_MSG = (
    "Supabase secrets missing. Add `[supabase].url` and `[supabase].anon_key` to "
    "`.streamlit/secrets.toml` or set SUPABASE_URL and SUPABASE_ANON_KEY environment "
    "variables."
)


def _read_config() -> Dict[str, str]:
    cfg = read_supabase_config()
    if not cfg.get("url") or not cfg.get("anon_key"):
        raise SupabaseConfigError(_MISSING_CONFIG_MSG)
    return cfg


def _build_client_options() -> ClientOptions:
    """Return Supabase client options with tighter HTTP timeouts."""

    timeout = httpx.Timeout(10.0, connect=5.0)
    return ClientOptions(
        httpx_client=httpx.Client(timeout=timeout),
        postgrest_client_timeout=timeout,
        storage_client_timeout=timeout,
        function_client_timeout=timeout,
    )


def _create_supabase_client() -> Client:
    cfg = _read_config()
    options = _build_client_options()
    try:
        return create_client(cfg["url"], cfg["anon_key"], options=options)
    except SupabaseException as exc:
        client = options.httpx_client
        if client is not None:
            client.close()
        raise SupabaseConfigError(str(exc) or _MISSING_CONFIG_MSG) from exc
    except httpx.HTTPStatusError as exc:
        client = options.httpx_client
        if client is not None:
            client.close()
        status = exc.response.status_code if exc.response is not None else "unknown"
        raise SupabaseConfigError(
            "Supabase responded with HTTP "
            f"{status}. Verify the Supabase URL/anon key in your Streamlit secrets or environment."
        ) from exc
    except httpx.HTTPError as exc:
        client = options.httpx_client
        if client is not None:
            client.close()
        raise SupabaseConnectionError(
            "Unable to reach Supabase right now. Check your internet connection and try again."
        ) from exc


async def create_async_client() -> AsyncClient:
    """Return a fresh async client; realtime channels are only available on it."""
    cfg = _read_config()
    try:
        return await acreate_client(cfg["url"], cfg["anon_key"])
    except SupabaseException as exc:
        raise SupabaseConfigError(str(exc) or _MISSING_CONFIG_MSG) from exc
    except httpx.HTTPError as exc:
        raise SupabaseConnectionError(
            "Unable to reach Supabase right now. Check your internet connection and try again."
        ) from exc


if st is not None:

    @st.cache_resource  # type: ignore[misc]
    def get_client() -> Client:
        """Return a cached Supabase client bound to anon key."""
        return _create_supabase_client()

else:

    @lru_cache(maxsize=1)
    def get_client() -> Client:
        """Fallback cached client when Streamlit is unavailable."""
        return _create_supabase_client()


def first_row(rows: Any) -> Optional[Dict[str, Any]]:
    """
    PostgREST Python client returns `.data` as list-like.
    Return the first dict or None.
    """
    if rows is None:
        return None
    data = getattr(rows, "data", rows)
    if isinstance(data, list) and data:
        first = data[0]
        return first if isinstance(first, dict) else None
    return None


def format_api_error(context: str, exc: APIError) -> str:
    message = getattr(exc, "message", None) or str(exc)
    hint = getattr(exc, "hint", "")
    details = getattr(exc, "details", "")
    parts = [f"{context}: {message}"]
    if details:
        parts.append(str(details))
    if hint:
        parts.append(str(hint))
    return " | ".join(parts)


__all__ = [
    "get_client",
    "create_async_client",
    "first_row",
    "format_api_error",
    "ServiceError",
    "SupabaseConfigError",
    "SupabaseConnectionError",
]
