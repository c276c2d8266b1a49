from __future__ import annotations

import httpx
import pytest

from conftest import FakeClient, unread_row
from swaprunn.services import messages
from swaprunn.utils.supa import ServiceError


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr(messages, "retry_with_backoff", _fast_retry)


def _fast_retry(fn, max_retries=3, delay=1.0):
    from swaprunn.utils.retry import retry_with_backoff

    return retry_with_backoff(fn, max_retries, delay, sleep=lambda _: None)


def test_list_messages_ordered_by_created_at():
    client = FakeClient(
        {
            "messages": [
                unread_row("d1", "u1", content="second", created_at="2024-05-01T10:05:00"),
                unread_row("d1", "u2", content="first", created_at="2024-05-01T10:00:00"),
                unread_row("d2", "u1", content="elsewhere"),
            ]
        }
    )

    rows = messages.list_messages(client, "d1")

    assert [r["content"] for r in rows] == ["first", "second"]
    assert messages.list_messages(client, "") == []


def test_list_messages_wraps_api_error():
    client = FakeClient()
    client.fail_tables.add("messages")

    with pytest.raises(ServiceError) as excinfo:
        messages.list_messages(client, "d1")

    assert "list_messages" in str(excinfo.value)


def test_send_message_strips_and_stores():
    client = FakeClient({"messages": []})

    row = messages.send_message(
        client, delivery_id="d1", sender_id="u1", recipient_id="u2", content="  on my way  "
    )

    assert row["content"] == "on my way"
    assert row["recipient_id"] == "u2"
    assert client.db["messages"][0]["delivery_id"] == "d1"


@pytest.mark.parametrize(
    "kwargs, fragment",
    [
        ({"content": "   "}, "empty"),
        ({"recipient_id": None}, "No recipient"),
        ({"content": "x" * (messages.MAX_MESSAGE_LENGTH + 1)}, "at most"),
    ],
)
def test_send_message_rejects_bad_input(kwargs, fragment):
    base = {"delivery_id": "d1", "sender_id": "u1", "recipient_id": "u2", "content": "hello"}
    with pytest.raises(ValueError) as excinfo:
        messages.send_message(FakeClient(), **{**base, **kwargs})
    assert fragment in str(excinfo.value)


def test_send_message_retries_network_errors():
    attempts = []

    class _Flaky:
        def insert(self, payload):
            self.payload = payload
            return self

        def execute(self):
            attempts.append(1)
            if len(attempts) < 3:
                raise httpx.ConnectError("connection reset")
            return type("Res", (), {"data": [{"id": "m1", **self.payload}]})()

    class _Client:
        def table(self, name):
            return _Flaky()

    row = messages.send_message(
        _Client(), delivery_id="d1", sender_id="u1", recipient_id="u2", content="hi"
    )

    assert row["id"] == "m1"
    assert len(attempts) == 3


def test_send_message_does_not_retry_api_errors():
    client = FakeClient()
    client.fail_tables.add("messages")

    with pytest.raises(ServiceError):
        messages.send_message(client, delivery_id="d1", sender_id="u1", recipient_id="u2", content="hi")

    assert len([c for c in client.calls if c[1] == "insert"]) == 1


def test_mark_read_only_touches_viewer_rows():
    client = FakeClient(
        {
            "messages": [
                unread_row("d1", "u1"),
                unread_row("d1", "u2"),
                unread_row("d2", "u1"),
            ]
        }
    )

    messages.mark_read(client, "d1", "u1")

    read = {(r["delivery_id"], r["recipient_id"]): r["read"] for r in client.db["messages"]}
    assert read == {("d1", "u1"): True, ("d1", "u2"): False, ("d2", "u1"): False}


def test_mark_read_swallows_failures(caplog):
    client = FakeClient()
    client.fail_tables.add("messages")

    messages.mark_read(client, "d1", "u1")

    assert "Failed to mark messages as read" in caplog.text


def test_count_unread_per_conversation_and_inbox():
    client = FakeClient(
        {
            "messages": [
                unread_row("d1", "u1"),
                unread_row("d1", "u1", read=True),
                unread_row("d2", "u1"),
                unread_row("d1", "u2"),
            ]
        }
    )

    assert messages.count_unread(client, "d1", "u1") == 1
    assert messages.count_unread(client, None, "u1") == 2
    assert messages.count_unread(client, "d1", None) == 0


def test_count_unread_failure_is_zero():
    client = FakeClient()
    client.fail_tables.add("messages")

    assert messages.count_unread(client, "d1", "u1") == 0


def _parties_db():
    return {
        "drivers": [{"id": "drv1", "user_id": "driver-user"}],
        "sales": [{"id": "s1", "user_id": "sales-user"}],
        "dealers": [{"id": "dl1", "user_id": "dealer-user"}],
    }


def test_resolve_recipient_prefers_driver_then_sales_then_dealer():
    client = FakeClient(_parties_db())
    delivery = {"id": "d1", "driver_id": "drv1", "sales_id": "s1", "dealer_id": "dl1"}

    assert messages.resolve_recipient(client, delivery, "sales-user") == "driver-user"
    assert messages.resolve_recipient(client, delivery, "driver-user") == "sales-user"

    no_sales = {"id": "d1", "driver_id": "drv1", "dealer_id": "dl1"}
    assert messages.resolve_recipient(client, no_sales, "driver-user") == "dealer-user"


def test_resolve_recipient_without_counterpart():
    client = FakeClient(_parties_db())

    assert messages.resolve_recipient(client, {"id": "d1", "sales_id": "s1"}, "sales-user") is None
    assert messages.resolve_recipient(client, {}, "sales-user") is None
