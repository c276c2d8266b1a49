"""Live unread-message counts backed by a count query plus a realtime feed.

A counter starts INACTIVE with a count of zero. Once bound to its
identifiers it runs the unread count query and opens a ``postgres_changes``
channel on ``messages`` at the same time. INSERT events addressed to the
viewer bump the count by one; any UPDATE event (usually a read receipt)
throws the local count away and re-runs the query. The two tasks are not
ordered against each other, so the last write to the count wins.

The Supabase client is always passed in. Realtime channels require the
async client (``supabase.acreate_client``); tests hand in a fake with the
same surface.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, Mapping, Optional, Set

from swaprunn.db_tables import MESSAGES, SCHEMA

__all__ = [
    "fetch_unread_count",
    "UnreadMessageCounter",
    "InboxUnreadCounter",
]

_logger = logging.getLogger(__name__)

CountListener = Callable[[int], None]


async def fetch_unread_count(
    client: Any,
    *,
    recipient_id: str,
    delivery_id: Optional[str] = None,
) -> int:
    """Return the number of unread messages addressed to ``recipient_id``.

    Failures and ``None`` counts both come back as zero.
    """
    try:
        query = client.table(MESSAGES).select("*", count="exact", head=True)
        if delivery_id:
            query = query.eq("delivery_id", delivery_id)
        response = await query.eq("recipient_id", recipient_id).eq("read", False).execute()
    except Exception as exc:
        _logger.warning(
            "Unread count failed for recipient=%s delivery=%s: %s",
            recipient_id,
            delivery_id,
            exc,
        )
        return 0
    count = getattr(response, "count", None)
    try:
        return int(count) if count is not None else 0
    except (TypeError, ValueError):
        return 0


def _new_record(payload: Any) -> Dict[str, Any]:
    """Pull the inserted/updated row out of a realtime payload."""
    if not isinstance(payload, Mapping):
        return {}
    data = payload.get("data")
    if isinstance(data, Mapping):
        record = data.get("record")
        if isinstance(record, Mapping):
            return dict(record)
    for key in ("new", "record"):
        record = payload.get(key)
        if isinstance(record, Mapping):
            return dict(record)
    return {}


class _LiveUnreadCount:
    """Shared activation, event and teardown handling for unread counters."""

    _topic_prefix = "unread"

    def __init__(self, client: Any, on_change: Optional[CountListener] = None) -> None:
        self._client = client
        self._on_change = on_change
        self._count = 0
        self._delivery_id: Optional[str] = None
        self._user_id: Optional[str] = None
        self._channel: Any = None
        self._generation = 0
        self._tasks: Set[asyncio.Task] = set()

    # -- read-only state -------------------------------------------------

    @property
    def count(self) -> int:
        return self._count

    @property
    def is_active(self) -> bool:
        return self._user_id is not None

    @property
    def delivery_id(self) -> Optional[str]:
        return self._delivery_id

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    # -- lifecycle -------------------------------------------------------

    async def _bind(self, delivery_id: Optional[str], user_id: str, channel_filter: str) -> None:
        self._generation += 1
        generation = self._generation
        self._delivery_id = delivery_id
        self._user_id = user_id
        _logger.debug(
            "Unread counter active for user=%s delivery=%s", user_id, delivery_id
        )

        self._spawn(self._refresh(generation))

        topic = f"{self._topic_prefix}-{delivery_id or 'all'}-{user_id}-{uuid.uuid4().hex[:8]}"
        channel = self._client.channel(topic)
        channel.on_postgres_changes(
            "INSERT",
            schema=SCHEMA,
            table=MESSAGES,
            filter=channel_filter,
            callback=lambda payload: self._handle_insert(generation, payload),
        )
        channel.on_postgres_changes(
            "UPDATE",
            schema=SCHEMA,
            table=MESSAGES,
            filter=channel_filter,
            callback=lambda payload: self._handle_update(generation, payload),
        )
        self._channel = channel
        try:
            await channel.subscribe()
        except BaseException:
            await self.deactivate()
            raise

    async def deactivate(self) -> None:
        """Release the channel and drop back to INACTIVE with a zero count."""
        self._generation += 1
        channel, self._channel = self._channel, None
        was_active = self.is_active
        self._delivery_id = None
        self._user_id = None

        tasks = list(self._tasks)
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if channel is not None:
            try:
                await self._client.remove_channel(channel)
            except Exception as exc:
                _logger.error("Error removing unread channel: %s", exc)

        self._set_count(0)
        if was_active:
            _logger.debug("Unread counter released")

    async def flush(self) -> None:
        """Wait until every in-flight count query has landed."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.deactivate()

    # -- internals -------------------------------------------------------

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self.is_active

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _set_count(self, value: int) -> None:
        if value == self._count:
            return
        self._count = value
        if self._on_change is not None:
            try:
                self._on_change(value)
            except Exception:
                _logger.exception("Unread count listener failed")

    async def _refresh(self, generation: int) -> None:
        user_id = self._user_id
        if user_id is None:
            return
        count = await fetch_unread_count(
            self._client, recipient_id=user_id, delivery_id=self._delivery_id
        )
        if self._is_current(generation):
            self._set_count(count)

    def _handle_insert(self, generation: int, payload: Any) -> None:
        if not self._is_current(generation):
            return
        record = _new_record(payload)
        if record.get("recipient_id") == self._user_id:
            self._set_count(self._count + 1)

    def _handle_update(self, generation: int, payload: Any) -> None:
        if not self._is_current(generation):
            return
        self._spawn(self._refresh(generation))


class UnreadMessageCounter(_LiveUnreadCount):
    """Unread messages for one delivery conversation and one viewer."""

    async def activate(self, delivery_id: Optional[str], user_id: Optional[str]) -> None:
        if (
            self.is_active
            and delivery_id == self._delivery_id
            and user_id == self._user_id
        ):
            return
        await self.deactivate()
        if not delivery_id or not user_id:
            return
        await self._bind(delivery_id, user_id, f"delivery_id=eq.{delivery_id}")


class InboxUnreadCounter(_LiveUnreadCount):
    """Unread messages across every conversation addressed to one user."""

    _topic_prefix = "unread-all"

    async def activate(self, user_id: Optional[str]) -> None:
        if self.is_active and user_id == self._user_id:
            return
        await self.deactivate()
        if not user_id:
            return
        await self._bind(None, user_id, f"recipient_id=eq.{user_id}")
