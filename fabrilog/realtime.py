"""Realtime dashboard refresh driven by Supabase change notifications.

A :class:`ChangeFeed` is an async iterable of :class:`ChangeEvent`.  The
:class:`DashboardMonitor` re-runs its refresh routine for each event; a
:class:`RefreshGuard` makes overlapping refreshes skip instead of queueing.
When the feed disconnects the monitor opens a new subscription, up to a
fixed number of attempts.
"""
from __future__ import annotations

import abc
import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import Any, AsyncIterator, Callable, Iterator, Sequence

from config.supabase_schema import table_name
from fabrilog.errors import FabrilogError

logger = logging.getLogger(__name__)

CHANNEL_NAME = "dashboard-updates"
WATCHED_TABLES = ("production_records", "production_details", "machines", "users")
_CLOSED_STATES = {"CHANNEL_ERROR", "TIMED_OUT", "CLOSED"}


class FeedDisconnected(ConnectionError):
    """Raised by a feed when its subscription is lost."""


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: str
    record: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> "ChangeEvent":
        """Build an event from a realtime ``postgres_changes`` payload."""

        data = payload.get("data", payload) if isinstance(payload, dict) else {}
        record = data.get("record") or data.get("old_record") or {}
        return cls(
            table=str(data.get("table") or ""),
            event_type=str(data.get("type") or data.get("eventType") or "*").upper(),
            record=dict(record) if isinstance(record, dict) else {},
        )


class ChangeFeed(abc.ABC):
    """Finite stream of change events for one subscription."""

    @abc.abstractmethod
    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class SupabaseChangeFeed(ChangeFeed):
    """Subscribe to ``postgres_changes`` on the watched tables.

    ``client`` is an async Supabase client (``supabase.acreate_client``).
    Events are pushed from the realtime callbacks into a queue and yielded
    in arrival order; a closed or errored channel ends the iteration with
    :class:`FeedDisconnected`.
    """

    _STOP = object()

    def __init__(self, client, tables: Sequence[str] = WATCHED_TABLES, schema: str = "public"):
        self._client = client
        self._tables = [table_name(table) for table in tables]
        self._schema = schema
        self._queue: asyncio.Queue = asyncio.Queue()
        self._channel = None

    def _on_change(self, payload) -> None:
        self._queue.put_nowait(ChangeEvent.from_payload(payload))

    def _on_status(self, status, error=None) -> None:
        state = str(getattr(status, "value", status)).upper()
        if state in _CLOSED_STATES:
            logger.warning("Realtime channel %s ended: %s %s", CHANNEL_NAME, state, error or "")
            self._queue.put_nowait(self._STOP)

    async def _subscribe(self) -> None:
        channel = self._client.channel(CHANNEL_NAME)
        for table in self._tables:
            channel.on_postgres_changes(
                "*", schema=self._schema, table=table, callback=self._on_change
            )
        await channel.subscribe(self._on_status)
        self._channel = channel

    async def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        await self._subscribe()
        while True:
            item = await self._queue.get()
            if item is self._STOP:
                raise FeedDisconnected(f"Realtime channel {CHANNEL_NAME} disconnected")
            yield item

    async def close(self) -> None:
        if self._channel is not None:
            await self._client.remove_channel(self._channel)
            self._channel = None


class RefreshGuard:
    """Single in-memory busy flag; a second caller skips instead of waiting."""

    def __init__(self) -> None:
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    @contextmanager
    def hold(self) -> Iterator[bool]:
        if self._busy:
            yield False
            return
        self._busy = True
        try:
            yield True
        finally:
            self._busy = False


class DashboardMonitor:
    """Keeps the latest dashboard snapshot fresh.

    ``loader`` is a blocking callable returning a snapshot; it is run in a
    worker thread so change events keep arriving while it runs.
    """

    def __init__(
        self,
        loader: Callable[[], Any],
        guard: RefreshGuard | None = None,
        max_reconnects: int = 5,
        reconnect_delay: float = 2.0,
    ) -> None:
        self._loader = loader
        self.guard = guard or RefreshGuard()
        self.max_reconnects = max_reconnects
        self.reconnect_delay = reconnect_delay
        self.snapshot = None
        self.refresh_count = 0
        self.skipped = 0

    async def refresh(self) -> bool:
        """Run the loader unless a refresh is already in flight.

        Returns ``True`` when a refresh ran.  Loader failures are logged and
        leave the previous snapshot in place.
        """

        with self.guard.hold() as acquired:
            if not acquired:
                self.skipped += 1
                logger.debug("Dashboard refresh already running; skipping")
                return False
            try:
                self.snapshot = await asyncio.to_thread(self._loader)
            except FabrilogError as exc:
                logger.error("Dashboard refresh failed: %s", exc)
                return False
            self.refresh_count += 1
            return True

    async def watch(self, feed_factory: Callable[[], ChangeFeed]) -> None:
        """Refresh once, then once per change event until reconnects run out."""

        await self.refresh()
        attempts = 0
        pending: set[asyncio.Task] = set()
        while True:
            feed = feed_factory()
            try:
                async for event in feed:
                    attempts = 0
                    logger.info("Change on %s (%s); refreshing dashboard", event.table, event.event_type)
                    task = asyncio.create_task(self.refresh())
                    pending.add(task)
                    task.add_done_callback(pending.discard)
                return
            except FeedDisconnected as exc:
                attempts += 1
                if attempts > self.max_reconnects:
                    logger.error("Giving up on realtime feed after %d attempts", attempts - 1)
                    raise
                logger.warning("%s; reconnecting (%d/%d)", exc, attempts, self.max_reconnects)
                await asyncio.sleep(self.reconnect_delay)
            finally:
                await feed.close()
                if pending:
                    await asyncio.gather(*pending, return_exceptions=True)


def dashboard_loader(start: date | None = None, end: date | None = None) -> Callable[[], Any]:
    """Return a loader bound to the current month, for use inside an app context."""

    from fabrilog.dashboard import load_dashboard, local_today
    from fabrilog.dates import month_range

    def load():
        today = local_today()
        range_start, range_end = (start, end) if start and end else month_range(today)
        return load_dashboard(range_start, range_end, today)

    return load
