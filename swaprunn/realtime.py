"""Background event loop that keeps live unread counters running for Streamlit.

Streamlit reruns the page script on a worker thread for every interaction, so
long-lived realtime channels cannot live inside the script itself. The
runner owns one asyncio loop on a daemon thread together with one async
Supabase client per signed-in user; pages ask it to watch a conversation
(or the whole inbox) and read the latest count back synchronously.

Every watch is held by an *owner*, the browser session that rendered the
badge. A counter lives while at least one owner holds it. Owners drop
keys they stopped rendering via ``retain``, everything at sign-out via
``release_user``, and owners that went quiet (closed tabs) expire after
``idle_timeout`` seconds.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from functools import lru_cache
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Set, Tuple

try:
    import streamlit as st
except Exception:  # pragma: no cover - allow headless usage (tests / CLI)
    st = None

from swaprunn.services.unread import InboxUnreadCounter, UnreadMessageCounter
from swaprunn.utils.supa import create_async_client

__all__ = ["RealtimeRunner", "get_realtime_runner", "SHARED_OWNER"]

_logger = logging.getLogger(__name__)

# (delivery_id, user_id); a ``None`` delivery is the user's whole inbox.
_Key = Tuple[Optional[str], str]

SHARED_OWNER = "shared"


class RealtimeRunner:
    def __init__(
        self,
        client_factory: Callable[[], Awaitable[Any]] = create_async_client,
        *,
        name: str = "swaprunn-realtime",
        idle_timeout: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client_factory = client_factory
        self._name = name
        self._idle_timeout = idle_timeout
        self._clock = clock
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        # Read from Streamlit threads.
        self._counts: Dict[_Key, int] = {}
        self._lock = threading.Lock()
        # Loop thread only.
        self._clients: Dict[str, Any] = {}
        self._tokens: Dict[str, str] = {}
        self._counters: Dict[_Key, Any] = {}
        self._owners: Dict[_Key, Set[str]] = {}
        self._last_seen: Dict[str, float] = {}

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self._loop is not None:
                return
            loop = asyncio.new_event_loop()
            thread = threading.Thread(target=self._run, args=(loop,), name=self._name, daemon=True)
            self._loop = loop
            self._thread = thread
        thread.start()
        _logger.info("Realtime runner started")

    @staticmethod
    def _run(loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        try:
            loop.run_forever()
        finally:
            loop.close()

    def _submit(self, coro):
        loop = self._loop
        if loop is None:
            coro.close()
            raise RuntimeError("Realtime runner is not started")
        return asyncio.run_coroutine_threadsafe(coro, loop)

    def _call(self, coro, timeout: float):
        if self._loop is None:
            self.start()
        return self._submit(coro).result(timeout)

    # -- clients ---------------------------------------------------------

    async def _client_for(self, user_id: str, session: Optional[Mapping[str, Any]]) -> Any:
        """Return ``user_id``'s async client, signed in with the latest tokens."""
        client = self._clients.get(user_id)
        if client is None:
            client = await self._client_factory()
            self._clients[user_id] = client
        session = session or {}
        access_token = session.get("access_token")
        if access_token and self._tokens.get(user_id) != access_token:
            # set_session also hands the token to the realtime socket.
            await client.auth.set_session(access_token, session.get("refresh_token"))
            self._tokens[user_id] = access_token
        return client

    # -- unread counters -------------------------------------------------

    def watch_unread(
        self,
        delivery_id: str,
        user_id: str,
        *,
        owner: str = SHARED_OWNER,
        session: Optional[Mapping[str, Any]] = None,
        timeout: float = 10.0,
    ) -> int:
        """Start (or keep) a live counter for one conversation and return its count."""
        if not delivery_id or not user_id:
            return 0
        return self._call(self._watch((delivery_id, user_id), owner, session), timeout)

    def watch_inbox(
        self,
        user_id: str,
        *,
        owner: str = SHARED_OWNER,
        session: Optional[Mapping[str, Any]] = None,
        timeout: float = 10.0,
    ) -> int:
        """Start (or keep) a live counter across all of ``user_id``'s conversations."""
        if not user_id:
            return 0
        return self._call(self._watch((None, user_id), owner, session), timeout)

    async def _watch(self, key: _Key, owner: str, session: Optional[Mapping[str, Any]]) -> int:
        self._last_seen[owner] = self._clock()
        await self._expire_idle()
        delivery_id, user_id = key
        client = await self._client_for(user_id, session)
        counter = self._counters.get(key)
        if counter is None:
            def on_change(count: int) -> None:
                self._store(key, count)

            if delivery_id is None:
                counter = InboxUnreadCounter(client, on_change=on_change)
            else:
                counter = UnreadMessageCounter(client, on_change=on_change)
            self._counters[key] = counter
            try:
                if delivery_id is None:
                    await counter.activate(user_id)
                else:
                    await counter.activate(delivery_id, user_id)
                await counter.flush()
            except BaseException:
                self._counters.pop(key, None)
                raise
        self._owners.setdefault(key, set()).add(owner)
        return counter.count

    def _store(self, key: _Key, count: int) -> None:
        with self._lock:
            self._counts[key] = count

    def unread_count(self, delivery_id: Optional[str], user_id: str) -> int:
        with self._lock:
            return self._counts.get((delivery_id, user_id), 0)

    def inbox_count(self, user_id: str) -> int:
        return self.unread_count(None, user_id)

    def watched(self, timeout: float = 10.0) -> Set[_Key]:
        """Keys that currently have a live counter."""
        if self._loop is None:
            return set()
        return self._submit(self._watched()).result(timeout)

    async def _watched(self) -> Set[_Key]:
        return set(self._counters)

    # -- release ---------------------------------------------------------

    def retain(self, owner: str, keys: Iterable[_Key], timeout: float = 10.0) -> None:
        """Keep ``owner``'s watches on ``keys`` and drop every other one it holds."""
        if self._loop is None:
            return
        self._submit(self._retain(owner, set(keys))).result(timeout)

    async def _retain(self, owner: str, keep: Set[_Key]) -> None:
        self._last_seen[owner] = self._clock()
        await self._drop_owner(owner, keep)
        await self._expire_idle()

    def release_owner(self, owner: str, timeout: float = 10.0) -> None:
        if self._loop is None:
            return
        self._submit(self._forget_owner(owner)).result(timeout)

    async def _forget_owner(self, owner: str) -> None:
        self._last_seen.pop(owner, None)
        await self._drop_owner(owner, set())

    async def _drop_owner(self, owner: str, keep: Set[_Key]) -> None:
        for key in [k for k, owners in self._owners.items() if owner in owners and k not in keep]:
            owners = self._owners[key]
            owners.discard(owner)
            if not owners:
                await self._release(key)

    async def _expire_idle(self) -> None:
        now = self._clock()
        stale = [
            owner
            for owner, seen in self._last_seen.items()
            if owner != SHARED_OWNER and now - seen > self._idle_timeout
        ]
        for owner in stale:
            _logger.debug("Expiring idle realtime owner %s", owner)
            await self._forget_owner(owner)

    def release(self, delivery_id: Optional[str], user_id: str, timeout: float = 10.0) -> None:
        """Tear down one counter no matter who holds it."""
        if self._loop is None:
            return
        self._submit(self._release((delivery_id, user_id))).result(timeout)

    async def _release(self, key: _Key) -> None:
        self._owners.pop(key, None)
        counter = self._counters.pop(key, None)
        if counter is not None:
            await counter.deactivate()
        with self._lock:
            self._counts.pop(key, None)

    def release_user(self, user_id: str, timeout: float = 10.0) -> None:
        """Drop every counter and the client of ``user_id`` (sign-out)."""
        if self._loop is None or not user_id:
            return
        self._submit(self._release_user(user_id)).result(timeout)

    async def _release_user(self, user_id: str) -> None:
        for key in [k for k in self._counters if k[1] == user_id]:
            await self._release(key)
        self._clients.pop(user_id, None)
        self._tokens.pop(user_id, None)

    # -- shutdown --------------------------------------------------------

    async def _shutdown(self) -> None:
        for key in list(self._counters):
            await self._release(key)
        self._owners.clear()
        self._last_seen.clear()
        self._clients.clear()
        self._tokens.clear()

    def stop(self, timeout: float = 10.0) -> None:
        with self._lock:
            loop, thread = self._loop, self._thread
        if loop is None:
            return
        try:
            if thread is not None and thread.is_alive():
                self._submit(self._shutdown()).result(timeout)
        finally:
            if thread is not None and thread.is_alive():
                loop.call_soon_threadsafe(loop.stop)
                thread.join(timeout)
            with self._lock:
                self._loop = None
                self._thread = None
                self._counts.clear()
            _logger.info("Realtime runner stopped")


if st is not None:

    @st.cache_resource  # type: ignore[misc]
    def get_realtime_runner() -> RealtimeRunner:
        """One runner per Streamlit server process."""
        runner = RealtimeRunner()
        runner.start()
        return runner

else:

    @lru_cache(maxsize=1)
    def get_realtime_runner() -> RealtimeRunner:
        runner = RealtimeRunner()
        runner.start()
        return runner
