from __future__ import annotations

import time
from typing import Any, Dict, List, Mapping, Tuple

from pydantic import BaseModel, Field

STATE_KEY = "livestate:realtime"
CHAT_HISTORY_LIMIT = 50

_DEFAULT_VOTE_OPTIONS: Tuple[Tuple[str, str], ...] = (
    ("1", "Option A"),
    ("2", "Option B"),
    ("3", "Option C"),
)


def now_ms() -> int:
    return int(time.time() * 1000)


def default_counter() -> Dict[str, int]:
    return {"count": 0, "lastUpdated": 0}


def default_votes() -> List[Dict[str, Any]]:
    return [{"id": option_id, "label": label, "votes": 0} for option_id, label in _DEFAULT_VOTE_OPTIONS]


def default_realtime_state() -> Dict[str, Any]:
    return {
        "counter": default_counter(),
        "chatMessages": [],
        "votes": default_votes(),
    }


def normalize_realtime_state(raw: Any) -> Tuple[Dict[str, Any], bool]:
    """Coerce a decoded state blob into the canonical shape.

    Returns the normalized state and whether anything had to be repaired.
    """
    source = raw if isinstance(raw, Mapping) else {}
    state = {
        "counter": _normalize_counter(source.get("counter")),
        "chatMessages": _normalize_chat_messages(source.get("chatMessages")),
        "votes": _normalize_votes(source.get("votes")),
    }
    return state, state != raw


def _normalize_counter(raw: Any) -> Dict[str, int]:
    if not isinstance(raw, Mapping):
        return default_counter()
    return {
        "count": _as_int(raw.get("count"), default=0),
        "lastUpdated": max(0, _as_int(raw.get("lastUpdated"), default=0)),
    }


def _normalize_chat_messages(raw: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        return []

    messages: List[Dict[str, Any]] = []
    for entry in raw:
        if not isinstance(entry, Mapping):
            continue
        message_id = entry.get("id")
        if not isinstance(message_id, str) or not message_id:
            continue
        messages.append(
            {
                "id": message_id,
                "username": _as_str(entry.get("username")),
                "message": _as_str(entry.get("message")),
                "timestamp": max(0, _as_int(entry.get("timestamp"), default=0)),
            }
        )
    return messages[-CHAT_HISTORY_LIMIT:]


def _normalize_votes(raw: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        return default_votes()

    votes: List[Dict[str, Any]] = []
    seen: set[str] = set()
    for entry in raw:
        if not isinstance(entry, Mapping):
            continue
        option_id = entry.get("id")
        if not isinstance(option_id, str) or not option_id or option_id in seen:
            continue
        seen.add(option_id)
        votes.append(
            {
                "id": option_id,
                "label": _as_str(entry.get("label")),
                "votes": max(0, _as_int(entry.get("votes"), default=0)),
            }
        )
    return votes or default_votes()


def _as_int(value: Any, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except Exception:
        return default


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


class CounterModel(BaseModel):
    count: int = 0
    last_updated: int = Field(default=0, alias="lastUpdated")


class ChatMessageModel(BaseModel):
    id: str
    username: str
    message: str
    timestamp: int


class VoteOptionModel(BaseModel):
    id: str
    label: str
    votes: int = 0


class RealtimeSnapshot(BaseModel):
    """Wire shape of the full state pushed to viewers and returned by actions."""

    counter: CounterModel
    chat_messages: List[ChatMessageModel] = Field(default_factory=list, alias="chatMessages")
    votes: List[VoteOptionModel] = Field(default_factory=list)

    class Config:
        extra = "ignore"

    @classmethod
    def from_state(cls, raw: Any) -> "RealtimeSnapshot":
        state, _ = normalize_realtime_state(raw)
        return cls(**state)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
