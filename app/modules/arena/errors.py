"""Error taxonomy for the arena engine.

Every error carries a stable ``code`` string so transports can map it without
matching on messages. ``ArenaError`` subclasses ``ValueError`` to keep the
``except ValueError`` call sites of the HTTP layer working.
"""

from __future__ import annotations

from typing import Optional


class ArenaError(ValueError):
    code: str = "arena_error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


# Validation ---------------------------------------------------------------
class InsufficientVocabulary(ArenaError):
    code = "insufficient_vocabulary"


class InvalidRoomCode(ArenaError):
    code = "invalid_room_code"


class RoomNotFound(ArenaError):
    code = "room_not_found"


class RoomFull(ArenaError):
    code = "room_full"


class SelfJoin(ArenaError):
    code = "self_join"


class RoomCodeUnavailable(ArenaError):
    code = "room_code_unavailable"


class NotReady(ArenaError):
    code = "not_ready"


# Authorization ------------------------------------------------------------
class NotAuthorized(ArenaError):
    code = "not_authorized"


# State machine ------------------------------------------------------------
class InvalidTransition(ArenaError):
    code = "invalid_transition"


# Store / transport --------------------------------------------------------
class StoreError(ArenaError):
    """Transient store failure; the attempted write must be treated as not committed."""

    code = "store_unavailable"


__all__ = [
    "ArenaError",
    "InsufficientVocabulary",
    "InvalidRoomCode",
    "RoomNotFound",
    "RoomFull",
    "SelfJoin",
    "RoomCodeUnavailable",
    "NotAuthorized",
    "NotReady",
    "InvalidTransition",
    "StoreError",
]
