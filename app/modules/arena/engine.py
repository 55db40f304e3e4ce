"""Match engine: the answer-resolution protocol and outcome computation.

A player answers the question at the ``q_index`` they are looking at. A wrong
answer changes nothing. A right answer becomes a conditional commit guarded
on ``status == playing and q_index == <answered index>``; the score increment
and the advance (or the finish) land in the same commit. Losing the guard
means the opponent got there first, which is a normal outcome, not an error.
"""

from __future__ import annotations

from typing import Any, Optional

from app.core.logging import get_logger
from app.modules.arena.errors import InvalidTransition, NotAuthorized, RoomNotFound
from app.modules.arena.models import (
    POINTS_PER_CORRECT,
    AnswerOutcome,
    AnswerResult,
    Match,
    MatchOutcome,
    MatchStatus,
    OutcomeKind,
    check_answer,
)
from app.modules.arena.store import Guard, MatchStore

logger = get_logger(__name__)


def answer_guard(q_index: int) -> Guard:
    def _guard(current: Match) -> bool:
        return current.status == MatchStatus.PLAYING and current.q_index == q_index

    return _guard


def apply_correct_answer(match: Match, uid: str, points: int = POINTS_PER_CORRECT) -> Match:
    """Award ``points`` to ``uid`` and advance to the next question or finish."""
    slot = match.slot_for(uid)
    if slot is None:
        raise NotAuthorized(f"{uid} is not playing this match")
    slot.score += points
    if match.q_index < match.last_index:
        match.q_index += 1
    else:
        match.transition_to(MatchStatus.FINISHED)
        match.finished_by = uid
        match.winner_score = slot.score
    return match


def compute_outcome(match: Match, local_uid: str) -> MatchOutcome:
    me = match.slot_for(local_uid)
    if me is None:
        raise NotAuthorized(f"{local_uid} is not playing this match")
    opponent = match.opponent_of(local_uid)
    mine = me.score
    theirs = opponent.score if opponent else 0

    if mine > theirs:
        kind = OutcomeKind.WIN
        message = f"Congratulations! You win {mine} - {theirs}!"
    elif mine < theirs:
        kind = OutcomeKind.LOSE
        message = f"You lose {mine} - {theirs}."
    else:
        kind = OutcomeKind.TIE
        message = f"It's a tie! {mine} - {theirs}."
    return MatchOutcome(
        result=kind, my_score=mine, opponent_score=theirs, message=message
    )


class MatchEngine:
    def __init__(self, store: MatchStore, *, points_per_correct: int = POINTS_PER_CORRECT) -> None:
        self.store = store
        self.points_per_correct = points_per_correct

    async def submit_answer(self, match: Match, uid: str, answer: Any) -> AnswerOutcome:
        """Resolve ``answer`` for the question currently shown in ``match``."""
        if match.id is None:
            raise RoomNotFound("match has no id")
        if not match.is_participant(uid):
            raise NotAuthorized(f"{uid} is not playing this match")
        if match.status != MatchStatus.PLAYING:
            raise InvalidTransition(f"match is {match.status.value}, not playing")

        q_index = match.q_index
        if not check_answer(match.questions[q_index], answer):
            logger.debug(
                f"Incorrect answer on question {q_index}",
                extra={"match": match.id, "uid": uid},
            )
            return AnswerOutcome(result=AnswerResult.INCORRECT, q_index=q_index)

        committed: Optional[Match] = None

        def _patch(current: Match) -> Match:
            nonlocal committed
            committed = apply_correct_answer(current, uid, self.points_per_correct)
            return committed

        applied = await self.store.conditional_update(
            match.id, answer_guard(q_index), _patch
        )
        if not applied or committed is None:
            logger.debug(
                f"Correct answer on question {q_index} was too late",
                extra={"match": match.id, "uid": uid},
            )
            return AnswerOutcome(result=AnswerResult.TOO_LATE, q_index=q_index)

        score = committed.slot_for(uid).score  # type: ignore[union-attr]
        if committed.status == MatchStatus.FINISHED:
            logger.info(
                f"Match finished with score {score}",
                extra={"match": match.id, "uid": uid},
            )
            return AnswerOutcome(result=AnswerResult.FINISHED, q_index=q_index, score=score)
        logger.info(
            f"Question {q_index} won, advancing to {committed.q_index}",
            extra={"match": match.id, "uid": uid},
        )
        return AnswerOutcome(result=AnswerResult.ADVANCED, q_index=q_index, score=score)

    async def submit_answer_by_id(
        self, match_id: str, uid: str, q_index: int, answer: Any
    ) -> AnswerOutcome:
        """Same protocol for transports that only carry the match id and index."""
        match = await self.store.get(match_id)
        if match is None:
            raise RoomNotFound()
        if not match.is_participant(uid):
            raise NotAuthorized(f"{uid} is not playing this match")
        if match.status == MatchStatus.FINISHED and q_index <= match.q_index:
            return AnswerOutcome(result=AnswerResult.TOO_LATE, q_index=q_index)
        if match.q_index != q_index:
            if match.status != MatchStatus.PLAYING or q_index > match.q_index:
                raise InvalidTransition(f"question {q_index} is not active")
            # the opponent already moved past this question
            return AnswerOutcome(result=AnswerResult.TOO_LATE, q_index=q_index)
        return await self.submit_answer(match, uid, answer)
