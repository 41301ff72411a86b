from __future__ import annotations

import json
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from .errors import InvalidActionRequest
from .store import RealtimeStore


class ActionName(str, Enum):
    INCREMENT = "increment"
    DECREMENT = "decrement"
    RESET = "reset"
    VOTE = "vote"
    CHAT = "chat"


def parse_action_body(raw: bytes | str) -> Dict[str, Any]:
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidActionRequest("Invalid request") from exc
    if payload is None:
        raise InvalidActionRequest("Invalid request")
    if not isinstance(payload, dict):
        return {}
    return payload


def _text_field(payload: Mapping[str, Any], name: str) -> Optional[str]:
    value = payload.get(name)
    if isinstance(value, str) and value:
        return value
    return None


class ActionDispatcher:
    """Route a decoded action request to the matching store mutation.

    Requests whose action is unknown, or that lack the companion fields the
    action needs, are silently ignored. Either way the caller gets the current
    full state back.
    """

    def __init__(self, store: RealtimeStore) -> None:
        self._store = store
        self._handlers: Dict[str, Callable[[Mapping[str, Any]], Awaitable[bool]]] = {
            ActionName.INCREMENT.value: self._increment,
            ActionName.DECREMENT.value: self._decrement,
            ActionName.RESET.value: self._reset,
            ActionName.VOTE.value: self._vote,
            ActionName.CHAT.value: self._chat,
        }

    async def dispatch(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        action = payload.get("action")
        handler = self._handlers.get(action) if isinstance(action, str) else None
        if handler is not None:
            await handler(payload)
        return await self._store.read()

    async def _increment(self, _: Mapping[str, Any]) -> bool:
        await self._store.increment_counter()
        return True

    async def _decrement(self, _: Mapping[str, Any]) -> bool:
        await self._store.decrement_counter()
        return True

    async def _reset(self, _: Mapping[str, Any]) -> bool:
        await self._store.reset_counter()
        return True

    async def _vote(self, payload: Mapping[str, Any]) -> bool:
        option_id = _text_field(payload, "optionId")
        if option_id is None:
            return False
        await self._store.add_vote(option_id)
        return True

    async def _chat(self, payload: Mapping[str, Any]) -> bool:
        username = _text_field(payload, "username")
        message = _text_field(payload, "message")
        if username is None or message is None:
            return False
        await self._store.add_chat_message(username, message)
        return True
