"""Vocabulary arena module exports."""

from .engine import MatchEngine, compute_outcome
from .generator import generate_arena_questions
from .matchmaking import MatchmakingService
from .models import AnswerOutcome, AnswerResult, Match, MatchStatus, VocabularyItem
from .session import ClientSession, SessionMode
from .store import InMemoryMatchStore, MatchStore

__all__ = [
    "MatchEngine",
    "compute_outcome",
    "generate_arena_questions",
    "MatchmakingService",
    "AnswerOutcome",
    "AnswerResult",
    "Match",
    "MatchStatus",
    "VocabularyItem",
    "ClientSession",
    "SessionMode",
    "InMemoryMatchStore",
    "MatchStore",
]
