import httpx
import pytest
from postgrest.exceptions import APIError

from swaprunn.utils import supa
from swaprunn.utils.supa import SupabaseConfigError, first_row, format_api_error


def test_first_row_basic():
    class Resp:
        def __init__(self, data):
            self.data = data
    assert first_row(Resp([{"a": 1}])) == {"a": 1}
    assert first_row(Resp([])) is None
    assert first_row(None) is None
    assert first_row([{"b": 2}]) == {"b": 2}


def test_format_api_error_joins_details_and_hint():
    exc = APIError({"message": "permission denied", "code": "42501", "details": "RLS", "hint": "sign in"})
    assert format_api_error("send_message", exc) == "send_message: permission denied | RLS | sign in"


def test_missing_config_raises(monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)

    with pytest.raises(SupabaseConfigError) as excinfo:
        supa._create_supabase_client()  # pylint: disable=protected-access

    assert "SUPABASE_URL" in str(excinfo.value)


def test_create_supabase_client_http_status_error(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")

    request = httpx.Request("GET", "https://example.supabase.co")
    response = httpx.Response(404, request=request, text="Not Found")

    def _raise_http_status(*args, **kwargs):  # pragma: no cover - helper for test
        raise httpx.HTTPStatusError("not found", request=request, response=response)

    monkeypatch.setattr(supa, "create_client", _raise_http_status)

    with pytest.raises(SupabaseConfigError) as excinfo:
        supa._create_supabase_client()  # pylint: disable=protected-access

    assert "HTTP 404" in str(excinfo.value)


@pytest.mark.asyncio
async def test_create_async_client_connection_error(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")

    async def _unreachable(*args, **kwargs):
        raise httpx.ConnectError("no route to host")

    monkeypatch.setattr(supa, "acreate_client", _unreachable)

    with pytest.raises(supa.SupabaseConnectionError):
        await supa.create_async_client()
