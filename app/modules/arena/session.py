"""Per-player client session.

A ``ClientSession`` is what one player's client runs: it follows the single
match that player is in, turns committed snapshots into a local mode
(lobby / waiting / playing), pronounces each new question once, and guards
answer submission with a per-question lock. Two sessions never talk to each
other directly; everything goes through the shared store.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

from app.core.config import settings
from app.core.logging import get_logger
from app.modules.arena.engine import MatchEngine, compute_outcome
from app.modules.arena.errors import RoomNotFound, StoreError
from app.modules.arena.matchmaking import MatchmakingService
from app.modules.arena.models import (
    AnswerOutcome,
    Match,
    MatchOutcome,
    MatchStatus,
    VocabularyItem,
)
from app.modules.arena.speech import NullPronouncer, Pronouncer
from app.modules.arena.store import MatchStore, Unsubscribe

logger = get_logger(__name__)

OutcomeCallback = Callable[[MatchOutcome], Awaitable[None]]
SnapshotCallback = Callable[[Optional[Match]], Awaitable[None]]


class SessionMode(str, Enum):
    LOBBY = "lobby"
    WAITING = "waiting"
    PLAYING = "playing"


class ClientSession:
    def __init__(
        self,
        store: MatchStore,
        uid: str,
        name: str,
        *,
        engine: Optional[MatchEngine] = None,
        matchmaking: Optional[MatchmakingService] = None,
        pronouncer: Optional[Pronouncer] = None,
        on_outcome: Optional[OutcomeCallback] = None,
        on_snapshot: Optional[SnapshotCallback] = None,
        pronounce_delay: Optional[float] = None,
    ) -> None:
        self.store = store
        self.uid = uid
        self.name = name
        self.engine = engine or MatchEngine(store)
        self.matchmaking = matchmaking or MatchmakingService(store)
        self.pronouncer: Pronouncer = pronouncer or NullPronouncer()
        self.on_outcome = on_outcome
        self.on_snapshot = on_snapshot
        self.pronounce_delay = (
            settings.arena.pronounce_delay_sec
            if pronounce_delay is None
            else pronounce_delay
        )

        self.mode = SessionMode.LOBBY
        self.match: Optional[Match] = None
        self.outcome: Optional[MatchOutcome] = None
        self.has_answered = False
        self.input_buffer = ""
        self._seen_q_index: Optional[int] = None
        self._watching: Optional[str] = None
        self._unsubscribe: Optional[Unsubscribe] = None
        self._pronounce_handle: Optional[asyncio.TimerHandle] = None

    @property
    def match_id(self) -> Optional[str]:
        return self._watching

    # Subscription -------------------------------------------------------
    async def start(self) -> Optional[Match]:
        """Resume the player's active match, if any."""
        match = await self.matchmaking.find_active_match(self.uid)
        if match is None:
            return None
        await self.attach(match.id)
        return match

    async def attach(self, match_id: str) -> None:
        self._detach()
        self._reset_round()
        self._seen_q_index = None
        self.outcome = None
        self.match = None
        self._watching = match_id

        async def _on_change(snapshot: Optional[Match]) -> None:
            if self._watching != match_id:
                return
            await self._handle_snapshot(match_id, snapshot)

        self._unsubscribe = await self.store.subscribe(match_id, _on_change)
        logger.debug("Session attached", extra={"match": match_id, "uid": self.uid})

    def _detach(self) -> None:
        self._cancel_pronounce()
        if self._unsubscribe is not None:
            self._unsubscribe()
        self._unsubscribe = None
        self._watching = None

    def _reset_round(self) -> None:
        self.has_answered = False
        self.input_buffer = ""

    async def _handle_snapshot(self, match_id: str, snapshot: Optional[Match]) -> None:
        if snapshot is None:
            logger.debug("Match record gone", extra={"match": match_id, "uid": self.uid})
            self._detach()
            self.match = None
            self.mode = SessionMode.LOBBY
            self._reset_round()
            if self.on_snapshot:
                await self.on_snapshot(None)
            return

        self.match = snapshot
        if snapshot.status == MatchStatus.FINISHED:
            await self._finish(match_id, snapshot)
            return

        if snapshot.status == MatchStatus.PLAYING:
            self.mode = SessionMode.PLAYING
            if snapshot.q_index != self._seen_q_index:
                self._seen_q_index = snapshot.q_index
                self._reset_round()
                self._schedule_pronounce(snapshot.current_question.audio)
        else:
            self.mode = SessionMode.WAITING
        if self.on_snapshot:
            await self.on_snapshot(snapshot)

    async def _finish(self, match_id: str, snapshot: Match) -> None:
        self._detach()
        self.mode = SessionMode.LOBBY
        self._reset_round()
        if snapshot.is_participant(self.uid):
            self.outcome = compute_outcome(snapshot, self.uid)
        logger.info(
            f"Match over: {self.outcome.result.value if self.outcome else 'spectated'}",
            extra={"match": match_id, "uid": self.uid},
        )
        if self.on_snapshot:
            await self.on_snapshot(snapshot)
        if self.outcome and self.on_outcome:
            await self.on_outcome(self.outcome)
        # only the player whose answer finished the match cleans up
        if snapshot.finished_by == self.uid:
            await self.store.delete(match_id)
            logger.info("Finished match deleted", extra={"match": match_id, "uid": self.uid})

    def _schedule_pronounce(self, text: Optional[str]) -> None:
        # a newer question supersedes audio still waiting for its delay
        self._cancel_pronounce()
        if not text:
            return
        if self.pronounce_delay > 0:
            self._pronounce_handle = asyncio.get_running_loop().call_later(
                self.pronounce_delay, self._pronounce_now, text
            )
        else:
            self.pronouncer.pronounce(text)

    def _pronounce_now(self, text: str) -> None:
        self._pronounce_handle = None
        self.pronouncer.pronounce(text)

    def _cancel_pronounce(self) -> None:
        if self._pronounce_handle is not None:
            self._pronounce_handle.cancel()
            self._pronounce_handle = None

    # Answers ------------------------------------------------------------
    async def submit_answer(self, value: Any) -> Optional[AnswerOutcome]:
        match = self.match
        if self.has_answered or match is None or match.status != MatchStatus.PLAYING:
            return None
        if self.mode != SessionMode.PLAYING:
            return None

        self.has_answered = True
        try:
            outcome = await self.engine.submit_answer(match, self.uid, value)
        except StoreError:
            self.has_answered = False
            raise
        logger.debug(
            f"Answer on question {outcome.q_index}: {outcome.result.value}",
            extra={"match": match.id, "uid": self.uid},
        )
        return outcome

    # Lobby --------------------------------------------------------------
    async def create_room(self, vocab_list: Sequence[VocabularyItem]) -> Match:
        match = await self.matchmaking.create_room(self.uid, self.name, vocab_list)
        await self.attach(match.id)
        return match

    async def join_room(self, code: str) -> Match:
        match = await self.matchmaking.join_room(code, self.uid, self.name)
        await self.attach(match.id)
        return match

    async def start_match(self) -> Match:
        if self._watching is None:
            raise RoomNotFound("Not in a room")
        return await self.matchmaking.start_match(self._watching, self.uid)

    async def cancel_room(self) -> None:
        if self._watching is None:
            raise RoomNotFound("Not in a room")
        match_id = self._watching
        await self.matchmaking.cancel_room(match_id, self.uid)
        self._detach()
        self.match = None
        self.mode = SessionMode.LOBBY

    def close(self) -> None:
        self._detach()
