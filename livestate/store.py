from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from .backends import KeyValueBackend
from .models import (
    CHAT_HISTORY_LIMIT,
    STATE_KEY,
    normalize_realtime_state,
    now_ms,
)
from .notifier import ChangeNotifier

logger = logging.getLogger(__name__)

Mutation = Callable[[Dict[str, Any]], bool]


def new_message_id(timestamp: int) -> str:
    return f"{timestamp}-{uuid.uuid4().hex[:12]}"


class RealtimeStore:
    """Authoritative counter/chat/poll state persisted as one JSON blob.

    Every read-modify-write cycle runs under a single ``asyncio.Lock`` so that
    concurrent actions inside the process never lose updates. Listeners on the
    notifier are signalled once per successful mutation, after the lock has
    been released.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        notifier: Optional[ChangeNotifier] = None,
        *,
        key: str = STATE_KEY,
        clock: Callable[[], int] = now_ms,
        id_factory: Callable[[int], str] = new_message_id,
    ) -> None:
        self.backend = backend
        self.notifier = notifier if notifier is not None else ChangeNotifier()
        self.key = key
        self._clock = clock
        self._id_factory = id_factory
        self._lock = asyncio.Lock()

    async def read(self) -> Dict[str, Any]:
        async with self._lock:
            return await self._load()

    async def get_counter(self) -> Dict[str, int]:
        return (await self.read())["counter"]

    async def get_chat_messages(self) -> List[Dict[str, Any]]:
        return (await self.read())["chatMessages"]

    async def get_votes(self) -> List[Dict[str, Any]]:
        return (await self.read())["votes"]

    async def increment_counter(self) -> Dict[str, int]:
        state = await self._mutate(lambda current: self._set_count(current, current["counter"]["count"] + 1))
        return state["counter"]

    async def decrement_counter(self) -> Dict[str, int]:
        state = await self._mutate(lambda current: self._set_count(current, current["counter"]["count"] - 1))
        return state["counter"]

    async def reset_counter(self) -> Dict[str, int]:
        state = await self._mutate(lambda current: self._set_count(current, 0))
        return state["counter"]

    async def add_chat_message(self, username: str, message: str) -> Dict[str, Any]:
        timestamp = self._clock()
        entry = {
            "id": self._id_factory(timestamp),
            "username": username,
            "message": message,
            "timestamp": timestamp,
        }

        def append(current: Dict[str, Any]) -> bool:
            messages = current["chatMessages"]
            messages.append(entry)
            if len(messages) > CHAT_HISTORY_LIMIT:
                del messages[: len(messages) - CHAT_HISTORY_LIMIT]
            return True

        await self._mutate(append)
        return dict(entry)

    async def add_vote(self, option_id: str) -> List[Dict[str, Any]]:
        """Count one vote; unknown option ids leave the poll untouched."""

        def vote(current: Dict[str, Any]) -> bool:
            for option in current["votes"]:
                if option["id"] == option_id:
                    option["votes"] += 1
                    return True
            return False

        state = await self._mutate(vote)
        return state["votes"]

    def _set_count(self, current: Dict[str, Any], count: int) -> bool:
        current["counter"] = {"count": count, "lastUpdated": self._clock()}
        return True

    async def _mutate(self, mutation: Mutation) -> Dict[str, Any]:
        async with self._lock:
            state = await self._load()
            changed = mutation(state)
            if changed:
                await self._save(state)

        if changed:
            self.notifier.notify()
        return state

    async def _load(self) -> Dict[str, Any]:
        raw = await self.backend.get(self.key)
        decoded: Any = None
        if raw is not None:
            try:
                decoded = json.loads(raw)
            except ValueError:
                decoded = None

        state, repaired = normalize_realtime_state(decoded)
        if repaired:
            reason = "missing" if raw is None else "invalid"
            logger.warning("Repairing %s state blob under key=%s", reason, self.key)
            await self._save(state)
        return state

    async def _save(self, state: Dict[str, Any]) -> None:
        await self.backend.set(self.key, json.dumps(state, separators=(",", ":")))
