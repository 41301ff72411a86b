from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Optional

from .models import RealtimeSnapshot
from .notifier import ChangeNotifier
from .store import RealtimeStore

logger = logging.getLogger(__name__)

KEEPALIVE_FRAME = ": ping\n\n"
DEFAULT_KEEPALIVE_INTERVAL = 30.0
DEFAULT_PENDING_LIMIT = 256


class StreamState(str, Enum):
    OPEN = "OPEN"
    STREAMING = "STREAMING"
    CLOSED = "CLOSED"


def format_snapshot_frame(state: Mapping[str, Any]) -> str:
    snapshot = RealtimeSnapshot.from_state(state).to_wire()
    return f"data: {json.dumps(snapshot, separators=(',', ':'))}\n\n"


class SnapshotStreamPublisher:
    """Per-connection event stream of full-state snapshots.

    Pushes one snapshot on open, another after every change notification and
    a keepalive comment on a fixed cadence. Every notification queues one
    pending frame; each frame carries the state as read when it is sent.
    """

    def __init__(
        self,
        store: RealtimeStore,
        notifier: Optional[ChangeNotifier] = None,
        *,
        keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
        pending_limit: int = DEFAULT_PENDING_LIMIT,
    ) -> None:
        self._store = store
        self._notifier = notifier if notifier is not None else store.notifier
        self._keepalive_interval = max(0.01, float(keepalive_interval))
        self._is_disconnected = is_disconnected
        self._pending: "asyncio.Queue[None]" = asyncio.Queue(maxsize=max(1, int(pending_limit)))
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.state = StreamState.OPEN

    def _on_change(self) -> None:
        if self._pending.full():
            try:
                self._pending.get_nowait()
            except asyncio.QueueEmpty:
                pass
        try:
            self._pending.put_nowait(None)
        except asyncio.QueueFull:
            pass

    async def frames(self) -> AsyncIterator[str]:
        if self.state is not StreamState.OPEN:
            return

        loop = asyncio.get_running_loop()
        self._unsubscribe = self._notifier.subscribe(self._on_change)
        try:
            frame = await self._snapshot_frame()
            if frame is not None:
                yield frame

            self.state = StreamState.STREAMING
            logger.debug("Snapshot stream streaming")
            next_ping = loop.time() + self._keepalive_interval
            while self.state is StreamState.STREAMING:
                changed = await self._next_change(max(0.0, next_ping - loop.time()))

                if await self._peer_gone():
                    break

                if changed:
                    frame = await self._snapshot_frame()
                    if frame is not None:
                        yield frame

                if loop.time() >= next_ping:
                    next_ping = loop.time() + self._keepalive_interval
                    yield KEEPALIVE_FRAME
        finally:
            self.close()

    def close(self) -> None:
        if self.state is StreamState.CLOSED:
            return
        self.state = StreamState.CLOSED
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        logger.debug("Snapshot stream closed")

    async def _next_change(self, timeout: float) -> bool:
        try:
            self._pending.get_nowait()
            return True
        except asyncio.QueueEmpty:
            pass
        try:
            await asyncio.wait_for(self._pending.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def _snapshot_frame(self) -> Optional[str]:
        try:
            state = await self._store.read()
            return format_snapshot_frame(state)
        except Exception:
            logger.exception("Failed to build snapshot frame")
            return None

    async def _peer_gone(self) -> bool:
        if self._is_disconnected is None:
            return False
        try:
            return bool(await self._is_disconnected())
        except Exception:
            logger.exception("Disconnect check failed; closing stream")
            return True
