import random

import pytest

from app.modules.arena.engine import MatchEngine
from app.modules.arena.matchmaking import MatchmakingService
from app.modules.arena.models import ArenaInputQuestion, ArenaQuizQuestion, VocabularyItem
from app.modules.arena.store import InMemoryMatchStore

ALICE = ("uid-alice", "Alice")
BOB = ("uid-bob", "Bob")


@pytest.fixture()
def vocab():
    return [
        VocabularyItem(word="你好", pinyin="nǐ hǎo", meaning="hello"),
        VocabularyItem(word="谢谢", pinyin="xiè xie", meaning="thank you"),
        VocabularyItem(word="猫", pinyin="māo", meaning="cat"),
        VocabularyItem(word="狗", pinyin="gǒu", meaning="dog"),
        VocabularyItem(word="水", pinyin="shuǐ", meaning="water"),
    ]


@pytest.fixture()
def rng():
    return random.Random(1234)


@pytest.fixture()
async def store():
    s = InMemoryMatchStore()
    yield s
    await s.aclose()


@pytest.fixture()
def matchmaking(store, rng):
    return MatchmakingService(store, rng=rng)


@pytest.fixture()
def engine(store):
    return MatchEngine(store)


@pytest.fixture()
async def started_match(matchmaking, vocab):
    """A match between Alice (owner) and Bob, already playing question 0."""
    room = await matchmaking.create_room(*ALICE, vocab)
    await matchmaking.join_room(room.room_code, *BOB)
    return await matchmaking.start_match(room.id, ALICE[0])


def right_answer(question):
    if isinstance(question, (ArenaQuizQuestion, ArenaInputQuestion)):
        return question.correct
    raise AssertionError(f"unexpected question kind {question.type}")


def wrong_answer(question):
    if isinstance(question, ArenaQuizQuestion):
        return (question.correct + 1) % len(question.options)
    return "definitely not it"
