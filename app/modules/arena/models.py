"""Pydantic models for the vocabulary arena.

Plain Pydantic schemas shared by the matchmaking service, the engine, the
stores and the API handlers. Questions form a discriminated union on
``type`` so every kind carries only the fields it needs, and
``check_answer`` is the single grading dispatch.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.modules.arena.errors import InvalidTransition

QUESTIONS_PER_MATCH = 10
POINTS_PER_CORRECT = 10
OPTIONS_PER_QUESTION = 4
ROOM_CODE_LENGTH = 6
ROOM_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_text(value: str) -> str:
    return value.strip().lower()


class VocabularyItem(BaseModel):
    """A single catalog entry supplied by the surrounding app."""

    model_config = ConfigDict(frozen=True)

    word: str
    pinyin: str
    meaning: str


# Questions ----------------------------------------------------------------
class _QuestionBase(BaseModel):
    text: str

    @property
    def audio(self) -> Optional[str]:
        """Text to vocalize when the question is shown, if any."""
        for attr in ("audio_word", "audio_sentence", "audio_text"):
            value = getattr(self, attr, None)
            if value:
                return value
        return None


class ArenaQuizQuestion(_QuestionBase):
    type: Literal["arena_quiz"] = "arena_quiz"
    q_type_id: int = Field(ge=1, le=6)
    options: list[str]
    correct: int
    audio_word: Optional[str] = None
    audio_sentence: Optional[str] = None

    @model_validator(mode="after")
    def _check_options(self) -> "ArenaQuizQuestion":
        if len(self.options) != OPTIONS_PER_QUESTION:
            raise ValueError(
                f"arena_quiz needs exactly {OPTIONS_PER_QUESTION} options, got {len(self.options)}"
            )
        if len(set(self.options)) != len(self.options):
            raise ValueError("arena_quiz options must be distinct")
        if not 0 <= self.correct < len(self.options):
            raise ValueError("correct index out of range")
        return self


class ArenaInputQuestion(_QuestionBase):
    type: Literal["arena_input"] = "arena_input"
    q_type_id: Literal[7] = 7
    correct: str
    audio_sentence: Optional[str] = None


class McqQuestion(_QuestionBase):
    type: Literal["mcq"] = "mcq"
    options: list[str] = Field(default_factory=list)
    correct: int


class ListenMcqQuestion(_QuestionBase):
    type: Literal["listen_mcq"] = "listen_mcq"
    audio_text: Optional[str] = None
    options: list[str] = Field(default_factory=list)
    correct: int


class FillBlankQuestion(_QuestionBase):
    """``text`` carries a literal ``[BLANK]`` placeholder."""

    type: Literal["fib"] = "fib"
    answer: str


class JumbleQuestion(_QuestionBase):
    type: Literal["jumble"] = "jumble"
    answer: list[str]
    shuffled_words: Optional[list[str]] = None


class MatchPair(BaseModel):
    a: str
    b: str


class MatchPairsQuestion(_QuestionBase):
    type: Literal["match"] = "match"
    pairs: list[MatchPair]
    shuffled_col_b: Optional[list[str]] = None


class TranslationQuestion(_QuestionBase):
    type: Literal["translation"] = "translation"
    vietnamese: str
    chinese: str


class ListenWriteQuestion(_QuestionBase):
    type: Literal["listen_write"] = "listen_write"
    audio_text: Optional[str] = None
    answer: str


class ListenTranslateQuestion(_QuestionBase):
    type: Literal["listen_translate"] = "listen_translate"
    audio_text: Optional[str] = None
    answer: str


Question = Annotated[
    Union[
        ArenaQuizQuestion,
        ArenaInputQuestion,
        McqQuestion,
        ListenMcqQuestion,
        FillBlankQuestion,
        JumbleQuestion,
        MatchPairsQuestion,
        TranslationQuestion,
        ListenWriteQuestion,
        ListenTranslateQuestion,
    ],
    Field(discriminator="type"),
]


def _is_index(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def check_answer(question: Question, answer: Any) -> bool:
    """Grade ``answer`` against ``question``.

    Answers of the wrong shape are incorrect rather than errors.
    """
    if isinstance(question, (ArenaQuizQuestion, McqQuestion, ListenMcqQuestion)):
        return _is_index(answer) and answer == question.correct
    if isinstance(question, ArenaInputQuestion):
        return isinstance(answer, str) and _normalize_text(answer) == _normalize_text(
            question.correct
        )
    if isinstance(
        question, (FillBlankQuestion, ListenWriteQuestion, ListenTranslateQuestion)
    ):
        return isinstance(answer, str) and _normalize_text(answer) == _normalize_text(
            question.answer
        )
    if isinstance(question, JumbleQuestion):
        if not isinstance(answer, (list, tuple)):
            return False
        return " ".join(str(w) for w in answer) == " ".join(question.answer)
    if isinstance(question, MatchPairsQuestion):
        col_b = question.shuffled_col_b or []
        if not isinstance(answer, (list, tuple)) or len(answer) < len(question.pairs):
            return False
        for pair, b_idx in zip(question.pairs, answer):
            if not _is_index(b_idx) or not 0 <= b_idx < len(col_b):
                return False
            if col_b[b_idx] != pair.b:
                return False
        return True
    if isinstance(question, TranslationQuestion):
        return isinstance(answer, str) and answer.strip() == question.chinese.strip()
    raise TypeError(f"Unsupported question kind: {type(question).__name__}")


# Match state --------------------------------------------------------------
class MatchStatus(str, Enum):
    WAITING = "waiting"
    PLAYING = "playing"
    FINISHED = "finished"


_TRANSITIONS: dict[MatchStatus, frozenset[MatchStatus]] = {
    MatchStatus.WAITING: frozenset({MatchStatus.PLAYING}),
    MatchStatus.PLAYING: frozenset({MatchStatus.FINISHED}),
    MatchStatus.FINISHED: frozenset(),
}


def advance_status(current: MatchStatus, target: MatchStatus) -> MatchStatus:
    """Return ``target`` if the lifecycle allows ``current -> target``."""
    if target not in _TRANSITIONS[current]:
        raise InvalidTransition(f"{current.value} -> {target.value} is not allowed")
    return target


class PlayerSlot(BaseModel):
    uid: str
    name: str
    score: int = Field(default=0, ge=0)


class Match(BaseModel):
    """One two-player duel as stored in the shared record store."""

    id: Optional[str] = None
    room_code: str
    player1: PlayerSlot
    player2: Optional[PlayerSlot] = None
    status: MatchStatus = MatchStatus.WAITING
    questions: list[Question] = Field(
        min_length=QUESTIONS_PER_MATCH, max_length=QUESTIONS_PER_MATCH
    )
    q_index: int = Field(default=0, ge=0)
    finished_by: Optional[str] = None
    winner_score: Optional[int] = None
    created_at: datetime = Field(default_factory=now_utc)
    started_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_index(self) -> "Match":
        if self.q_index > self.last_index:
            raise ValueError("q_index beyond the last question")
        return self

    @property
    def last_index(self) -> int:
        return len(self.questions) - 1

    @property
    def current_question(self) -> Question:
        return self.questions[self.q_index]

    def is_participant(self, uid: str) -> bool:
        return self.slot_for(uid) is not None

    def slot_for(self, uid: str) -> Optional[PlayerSlot]:
        if self.player1.uid == uid:
            return self.player1
        if self.player2 is not None and self.player2.uid == uid:
            return self.player2
        return None

    def opponent_of(self, uid: str) -> Optional[PlayerSlot]:
        if self.player1.uid == uid:
            return self.player2
        if self.player2 is not None and self.player2.uid == uid:
            return self.player1
        return None

    def transition_to(self, target: MatchStatus) -> None:
        self.status = advance_status(self.status, target)


class AnswerResult(str, Enum):
    INCORRECT = "incorrect"
    ADVANCED = "advanced"
    FINISHED = "finished"
    TOO_LATE = "too_late"


class AnswerOutcome(BaseModel):
    result: AnswerResult
    q_index: int
    score: Optional[int] = None

    @property
    def committed(self) -> bool:
        return self.result in (AnswerResult.ADVANCED, AnswerResult.FINISHED)


class OutcomeKind(str, Enum):
    WIN = "win"
    LOSE = "lose"
    TIE = "tie"


class MatchOutcome(BaseModel):
    result: OutcomeKind
    my_score: int
    opponent_score: int
    message: str
