from __future__ import annotations


class LiveStateError(Exception):
    """Base error for the livestate service."""


class BackendUnavailableError(LiveStateError):
    """The backing key-value store could not be reached."""


class InvalidActionRequest(LiveStateError):
    """An action request body could not be parsed."""
