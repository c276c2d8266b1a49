"""In-memory Supabase stand-ins shared by the test modules."""

from __future__ import annotations

import asyncio
import uuid
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from postgrest.exceptions import APIError


# ---------------- Table builder ----------------
class FakeQuery:
    """Chainable PostgREST-style builder over a dict of row lists."""

    def __init__(self, client: "FakeClient", name: str):
        self.client = client
        self.name = name
        self._rows = client.db.setdefault(name, [])
        self._op = "select"
        self._fields = "*"
        self._payload: Any = None
        self._filters: List[tuple] = []
        self._order: Optional[tuple] = None
        self._limit: Optional[int] = None
        self._count: Optional[str] = None
        self._head = False

    def select(self, fields: str = "*", count: Optional[str] = None, head: bool = False):
        self._op = "select"
        self._fields = fields
        self._count = count
        self._head = head
        return self

    def insert(self, payload):
        self._op = "insert"
        self._payload = payload
        return self

    def update(self, patch):
        self._op = "update"
        self._payload = dict(patch)
        return self

    def delete(self):
        self._op = "delete"
        return self

    def eq(self, column, value):
        self._filters.append(("eq", column, value))
        return self

    def neq(self, column, value):
        self._filters.append(("neq", column, value))
        return self

    def is_(self, column, value):
        self._filters.append(("is", column, None if value == "null" else value))
        return self

    def in_(self, column, values):
        self._filters.append(("in", column, tuple(values)))
        return self

    def order(self, column, desc=False):
        self._order = (column, bool(desc))
        return self

    def limit(self, n):
        self._limit = n
        return self

    def _match(self, row: Dict[str, Any]) -> bool:
        for op, column, value in self._filters:
            current = row.get(column)
            if op == "eq" and current != value:
                return False
            if op == "neq" and current == value:
                return False
            if op == "is" and current is not value:
                return False
            if op == "in" and current not in value:
                return False
        return True

    def execute(self):
        self.client.calls.append((self.name, self._op, tuple(self._filters)))
        if self.name in self.client.fail_tables:
            raise APIError({"message": f"{self.name} unavailable", "code": "500"})

        count = None
        if self._op == "select":
            data = [dict(r) for r in self._rows if self._match(r)]
            if self._order:
                column, desc = self._order
                data.sort(key=lambda r: str(r.get(column) or ""), reverse=desc)
            if self._limit is not None:
                data = data[: self._limit]
            if self._count:
                count = len(data)
            if self._head:
                data = []
        elif self._op == "insert":
            items = self._payload if isinstance(self._payload, list) else [self._payload]
            data = []
            for item in items:
                row = {"id": uuid.uuid4().hex, **item}
                self._rows.append(row)
                data.append(dict(row))
        elif self._op == "update":
            data = []
            for row in self._rows:
                if self._match(row):
                    row.update(self._payload)
                    data.append(dict(row))
        else:
            kept = [r for r in self._rows if not self._match(r)]
            data = [dict(r) for r in self._rows if self._match(r)]
            self._rows[:] = kept
        return SimpleNamespace(data=data, count=count)


class FakeClient:
    def __init__(self, db: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.db = db if db is not None else {}
        self.calls: List[tuple] = []
        self.fail_tables: set = set()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)


# ---------------- Async client + realtime ----------------
class FakeAsyncQuery(FakeQuery):
    async def execute(self):
        client = self.client
        if self._op == "select" and self._count:
            client.count_queries += 1
            if client.count_gate is not None:
                await client.count_gate.wait()
        return FakeQuery.execute(self)


class FakeChannel:
    def __init__(self, topic: str):
        self.topic = topic
        self.listeners: List[Dict[str, Any]] = []
        self.subscribed = False
        self.removed = False
        self.fail_subscribe = False

    def on_postgres_changes(self, event, callback, table="*", schema="public", filter=None):
        self.listeners.append(
            {"event": event, "callback": callback, "table": table, "schema": schema, "filter": filter}
        )
        return self

    async def subscribe(self, callback=None):
        if self.fail_subscribe:
            raise ConnectionError("realtime socket refused")
        self.subscribed = True
        return self

    def emit(self, event: str, record: Dict[str, Any]) -> None:
        """Deliver an event to every listener, even after removal."""
        payload = {
            "data": {"type": event, "record": record, "table": "messages", "schema": "public"},
            "ids": [],
        }
        for listener in list(self.listeners):
            if listener["event"] == event:
                listener["callback"](payload)


class FakeAsyncAuth:
    """Records the tokens the realtime runner signs in with."""

    def __init__(self):
        self.sessions: List[tuple] = []

    async def set_session(self, access_token, refresh_token):
        self.sessions.append((access_token, refresh_token))


class FakeAsyncClient(FakeClient):
    def __init__(self, db=None):
        super().__init__(db)
        self.auth = FakeAsyncAuth()
        self.channels: List[FakeChannel] = []
        self.removed: List[FakeChannel] = []
        self.count_queries = 0
        self.count_gate: Optional[asyncio.Event] = None
        self.fail_next_subscribe = False

    def table(self, name: str) -> FakeAsyncQuery:
        return FakeAsyncQuery(self, name)

    def channel(self, topic: str) -> FakeChannel:
        channel = FakeChannel(topic)
        channel.fail_subscribe = self.fail_next_subscribe
        self.channels.append(channel)
        return channel

    async def remove_channel(self, channel: FakeChannel) -> None:
        channel.removed = True
        self.removed.append(channel)


def unread_row(delivery_id: str, recipient_id: str, read: bool = False, **extra) -> Dict[str, Any]:
    return {
        "id": uuid.uuid4().hex,
        "delivery_id": delivery_id,
        "sender_id": extra.pop("sender_id", "someone"),
        "recipient_id": recipient_id,
        "content": extra.pop("content", "hi"),
        "read": read,
        "created_at": extra.pop("created_at", "2024-05-01T10:00:00+00:00"),
        **extra,
    }


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def async_client():
    return FakeAsyncClient()
