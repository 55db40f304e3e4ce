"""Room lifecycle: create, join, start, cancel and active-match discovery.

Joins and starts go through ``conditional_update`` as well, so two joiners
racing for the same seat, or a join racing a cancel, resolve on the store
instead of in the caller.
"""

from __future__ import annotations

import random
from typing import Optional, Sequence

from app.core.config import ArenaSettings, settings as app_settings
from app.core.logging import get_logger
from app.modules.arena.errors import (
    InvalidRoomCode,
    InvalidTransition,
    NotAuthorized,
    NotReady,
    RoomCodeUnavailable,
    RoomFull,
    RoomNotFound,
    SelfJoin,
)
from app.modules.arena.generator import generate_arena_questions, generate_room_code
from app.modules.arena.models import (
    ROOM_CODE_ALPHABET,
    ROOM_CODE_LENGTH,
    Match,
    MatchStatus,
    PlayerSlot,
    VocabularyItem,
    now_utc,
)
from app.modules.arena.store import MatchStore

logger = get_logger(__name__)


def normalize_room_code(code: Optional[str]) -> str:
    value = (code or "").strip().upper()
    if len(value) != ROOM_CODE_LENGTH or any(c not in ROOM_CODE_ALPHABET for c in value):
        raise InvalidRoomCode(f"Room code must be {ROOM_CODE_LENGTH} characters A-Z/0-9")
    return value


class MatchmakingService:
    def __init__(
        self,
        store: MatchStore,
        *,
        settings: Optional[ArenaSettings] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store = store
        self.settings = settings or app_settings.arena
        self._rng = rng or random.Random()

    # Room lifecycle -----------------------------------------------------
    async def create_room(
        self,
        creator_uid: str,
        creator_name: str,
        vocab_list: Sequence[VocabularyItem],
    ) -> Match:
        questions = generate_arena_questions(
            vocab_list,
            rng=self._rng,
            max_attempts=self.settings.distractor_max_attempts,
        )
        room_code = await self._unused_room_code()
        match = Match(
            room_code=room_code,
            player1=PlayerSlot(uid=creator_uid, name=creator_name),
            questions=questions,
        )
        match.id = await self.store.create(match)
        logger.info(
            f"Room {room_code} created", extra={"match": match.id, "uid": creator_uid}
        )
        return match

    async def _unused_room_code(self) -> str:
        for _ in range(max(1, self.settings.room_code_max_attempts)):
            code = generate_room_code(self._rng)
            taken = await self.store.query(
                lambda m: True, room_code=code, statuses=(MatchStatus.WAITING,)
            )
            if not taken:
                return code
        raise RoomCodeUnavailable()

    async def join_room(self, code: str, joiner_uid: str, joiner_name: str) -> Match:
        room_code = normalize_room_code(code)
        candidates = await self.store.query(
            lambda m: True, room_code=room_code, statuses=(MatchStatus.WAITING,)
        )
        if not candidates:
            raise RoomNotFound(f"No waiting room with code {room_code}")
        # colliding codes among waiting rooms: the oldest room wins
        match = min(candidates, key=lambda m: m.created_at)

        if match.player1.uid == joiner_uid:
            raise SelfJoin("You are already in this room")
        if match.player2 is not None:
            if match.player2.uid == joiner_uid:
                return match
            raise RoomFull()

        def _guard(current: Match) -> bool:
            return current.status == MatchStatus.WAITING and current.player2 is None

        def _patch(current: Match) -> Match:
            current.player2 = PlayerSlot(uid=joiner_uid, name=joiner_name)
            return current

        if not await self.store.conditional_update(match.id, _guard, _patch):
            latest = await self.store.get(match.id)
            if latest is None or latest.status != MatchStatus.WAITING:
                raise RoomNotFound(f"No waiting room with code {room_code}")
            if latest.player2 is not None and latest.player2.uid == joiner_uid:
                return latest
            raise RoomFull()

        joined = await self.store.get(match.id)
        if joined is None:
            raise RoomNotFound()
        logger.info(
            f"Player joined room {room_code}", extra={"match": match.id, "uid": joiner_uid}
        )
        return joined

    async def start_match(self, match_id: str, requester_uid: str) -> Match:
        match = await self.store.get(match_id)
        if match is None:
            raise RoomNotFound()
        if match.player1.uid != requester_uid:
            raise NotAuthorized("Only the room owner can start the match")
        if match.player2 is None:
            raise NotReady("Waiting for a second player")
        if match.status != MatchStatus.WAITING:
            raise InvalidTransition(f"match is already {match.status.value}")

        def _guard(current: Match) -> bool:
            return current.status == MatchStatus.WAITING and current.player2 is not None

        def _patch(current: Match) -> Match:
            current.transition_to(MatchStatus.PLAYING)
            current.started_at = now_utc()
            return current

        if not await self.store.conditional_update(match_id, _guard, _patch):
            raise InvalidTransition("match is no longer waiting")
        started = await self.store.get(match_id)
        if started is None:
            raise RoomNotFound()
        logger.info("Match started", extra={"match": match_id, "uid": requester_uid})
        return started

    async def cancel_room(self, match_id: str, requester_uid: str) -> None:
        match = await self.store.get(match_id)
        if match is None:
            raise RoomNotFound()
        if match.player1.uid != requester_uid:
            raise NotAuthorized("Only the room owner can cancel the room")
        if match.status != MatchStatus.WAITING or match.player2 is not None:
            raise InvalidTransition("Only an unjoined waiting room can be cancelled")

        def _guard(current: Match) -> bool:
            return current.status == MatchStatus.WAITING and current.player2 is None

        if not await self.store.delete(match_id, guard=_guard):
            raise InvalidTransition("room was joined or started meanwhile")
        logger.info("Room cancelled", extra={"match": match_id, "uid": requester_uid})

    # Discovery ----------------------------------------------------------
    async def find_active_match(self, uid: str) -> Optional[Match]:
        matches = await self.store.query(
            lambda m: True,
            statuses=(MatchStatus.WAITING, MatchStatus.PLAYING),
            participant=uid,
        )
        if not matches:
            return None
        return max(matches, key=lambda m: m.created_at)
