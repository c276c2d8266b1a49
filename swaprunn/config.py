"""Runtime settings read from Streamlit secrets with environment fallbacks."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

try:
    import streamlit as st
except Exception:  # pragma: no cover - allow headless usage (tests / CLI)
    st = None

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_UNREAD_REFRESH_SECONDS = 3.0

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_logging_configured = False


def _secret(section: str, key: str) -> Optional[Any]:
    if st is None:
        return None
    try:
        return st.secrets[section][key]
    except Exception:
        return None


def read_supabase_config() -> Dict[str, Optional[str]]:
    """
    Prefer Streamlit secrets:
      st.secrets["supabase"]["url"]
      st.secrets["supabase"]["anon_key"]

    Fallback to env:
      SUPABASE_URL
      SUPABASE_ANON_KEY
    """
    url = _secret("supabase", "url") or os.getenv("SUPABASE_URL")
    key = _secret("supabase", "anon_key") or os.getenv("SUPABASE_ANON_KEY")
    return {"url": url, "anon_key": key}


def log_level() -> str:
    value = _secret("swaprunn", "log_level") or os.getenv("SWAPRUNN_LOG_LEVEL")
    return str(value or DEFAULT_LOG_LEVEL).upper()


def unread_refresh_seconds() -> float:
    raw = _secret("swaprunn", "unread_refresh_seconds") or os.getenv(
        "SWAPRUNN_UNREAD_REFRESH_SECONDS"
    )
    try:
        value = float(raw) if raw is not None else DEFAULT_UNREAD_REFRESH_SECONDS
    except (TypeError, ValueError):
        return DEFAULT_UNREAD_REFRESH_SECONDS
    return value if value > 0 else DEFAULT_UNREAD_REFRESH_SECONDS


def configure_logging(level: Optional[str] = None) -> None:
    """Attach a stream handler to the ``swaprunn`` logger once per process."""
    global _logging_configured
    logger = logging.getLogger("swaprunn")
    logger.setLevel(level or log_level())
    if _logging_configured:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    logger.addHandler(handler)
    _logging_configured = True


__all__ = [
    "read_supabase_config",
    "log_level",
    "unread_refresh_seconds",
    "configure_logging",
]
