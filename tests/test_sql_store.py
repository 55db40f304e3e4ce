import asyncio
import sqlite3
from contextlib import closing

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.db.base import build_engine, init_models
from app.modules.arena.engine import MatchEngine
from app.modules.arena.errors import StoreError
from app.modules.arena.matchmaking import MatchmakingService
from app.modules.arena.models import AnswerResult, MatchStatus
from app.modules.arena.sql_store import SqlMatchStore

from conftest import ALICE, BOB, right_answer


@pytest.fixture()
def db_path(tmp_path):
    return tmp_path / "arena.db"


@pytest.fixture()
async def sql_engine(db_path):
    engine = build_engine(f"sqlite+aiosqlite:///{db_path}")
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def sql_store(sql_engine):
    store = SqlMatchStore(async_sessionmaker(sql_engine, expire_on_commit=False))
    yield store
    await store.aclose()


@pytest.fixture()
async def sql_match(sql_store, vocab, rng):
    matchmaking = MatchmakingService(sql_store, rng=rng)
    room = await matchmaking.create_room(*ALICE, vocab)
    await matchmaking.join_room(room.room_code, *BOB)
    return await matchmaking.start_match(room.id, ALICE[0])


async def test_roundtrip_preserves_questions(sql_store, sql_match):
    loaded = await sql_store.get(sql_match.id)
    assert loaded.id == sql_match.id
    assert loaded.status == MatchStatus.PLAYING
    assert loaded.player2.uid == BOB[0]
    assert [q.type for q in loaded.questions] == [q.type for q in sql_match.questions]


async def test_stale_guard_loses(sql_store, sql_match):
    engine = MatchEngine(sql_store)
    q = sql_match.current_question
    first = await engine.submit_answer(sql_match, ALICE[0], right_answer(q))
    second = await engine.submit_answer(sql_match, BOB[0], right_answer(q))
    assert first.result == AnswerResult.ADVANCED
    assert second.result == AnswerResult.TOO_LATE
    latest = await sql_store.get(sql_match.id)
    assert latest.q_index == 1
    assert latest.player1.score == 10
    assert latest.player2.score == 0


async def test_concurrent_correct_answers_single_winner(sql_store, sql_match):
    engine = MatchEngine(sql_store)
    q = sql_match.current_question
    results = await asyncio.gather(
        engine.submit_answer(sql_match, ALICE[0], right_answer(q)),
        engine.submit_answer(sql_match, BOB[0], right_answer(q)),
    )
    kinds = sorted(r.result.value for r in results)
    assert kinds == ["advanced", "too_late"]
    latest = await sql_store.get(sql_match.id)
    assert latest.player1.score + latest.player2.score == 10


async def test_notifications_follow_commits(sql_store, sql_match):
    seen = []

    async def on_change(snapshot):
        seen.append(snapshot.q_index if snapshot else None)

    await sql_store.subscribe(sql_match.id, on_change)
    engine = MatchEngine(sql_store)
    match = sql_match
    for _ in range(3):
        await engine.submit_answer(match, ALICE[0], right_answer(match.current_question))
        match = await sql_store.get(match.id)
    await sql_store.delete(match.id)
    await sql_store.wait_idle()
    assert seen == [0, 1, 2, 3, None]


async def test_query_and_find_active(sql_store, sql_match):
    matchmaking = MatchmakingService(sql_store)
    active = await matchmaking.find_active_match(BOB[0])
    assert active.id == sql_match.id
    assert await matchmaking.find_active_match("someone-else") is None


async def test_store_errors_are_wrapped(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    store = SqlMatchStore(async_sessionmaker(engine, expire_on_commit=False))
    try:
        with pytest.raises(StoreError):
            await store.get("missing-table")
    finally:
        await engine.dispose()


def _bump_version(db_path, match_id):
    """Commit a write from another connection, the way a second process would."""
    with closing(sqlite3.connect(db_path)) as conn, conn:
        conn.execute(
            "UPDATE arena_matches SET version = version + 1 WHERE id = ?", (match_id,)
        )


def _read_version(db_path, match_id):
    with closing(sqlite3.connect(db_path)) as conn:
        return conn.execute(
            "SELECT version FROM arena_matches WHERE id = ?", (match_id,)
        ).fetchone()[0]


def _advance(m):
    m.q_index += 1
    return m


async def test_conflicting_commit_is_retried(sql_store, sql_match, db_path):
    seen = _read_version(db_path, sql_match.id)
    calls = []

    def guard(m):
        calls.append(m.q_index)
        if len(calls) == 1:
            _bump_version(db_path, sql_match.id)
        return m.q_index == 0

    assert await sql_store.conditional_update(sql_match.id, guard, _advance) is True
    assert calls == [0, 0]
    assert _read_version(db_path, sql_match.id) == seen + 2
    assert (await sql_store.get(sql_match.id)).q_index == 1


async def test_endless_conflicts_raise_store_error(sql_engine, sql_match, db_path):
    store = SqlMatchStore(async_sessionmaker(sql_engine, expire_on_commit=False), max_attempts=3)
    calls = []

    def guard(m):
        calls.append(m.q_index)
        _bump_version(db_path, sql_match.id)
        return True

    with pytest.raises(StoreError):
        await store.conditional_update(sql_match.id, guard, _advance)
    assert len(calls) == 3
    assert (await store.get(sql_match.id)).q_index == 0
    await store.aclose()


async def test_two_stores_race_for_one_answer(sql_engine, sql_store, sql_match):
    """Separate store instances share only the database, like two app processes."""
    other = SqlMatchStore(async_sessionmaker(sql_engine, expire_on_commit=False))
    q = sql_match.current_question
    results = await asyncio.gather(
        MatchEngine(sql_store).submit_answer(sql_match, ALICE[0], right_answer(q)),
        MatchEngine(other).submit_answer(sql_match, BOB[0], right_answer(q)),
    )
    assert sorted(r.result.value for r in results) == ["advanced", "too_late"]
    latest = await sql_store.get(sql_match.id)
    assert latest.q_index == 1
    assert latest.player1.score + latest.player2.score == 10
    await other.aclose()


async def test_commit_between_read_and_register_is_delivered(sql_store, sql_match, monkeypatch):
    real_get = sql_store.get
    racing = []
    seen = []

    async def on_change(snapshot):
        seen.append(snapshot.q_index)

    async def slow_get(match_id):
        snapshot = await real_get(match_id)
        if not racing:
            racing.append(
                asyncio.create_task(
                    sql_store.conditional_update(match_id, lambda m: m.q_index == 0, _advance)
                )
            )
            await asyncio.sleep(0.01)
        return snapshot

    monkeypatch.setattr(sql_store, "get", slow_get)
    await sql_store.subscribe(sql_match.id, on_change)
    assert await racing[0] is True
    await sql_store.wait_idle()
    assert seen == [0, 1]


async def test_query_hints_filter_in_sql(sql_store, sql_match, vocab, rng):
    matchmaking = MatchmakingService(sql_store, rng=rng)
    waiting = await matchmaking.create_room("uid-carol", "Carol", vocab)
    by_code = await sql_store.query(
        lambda m: True, room_code=waiting.room_code, statuses=(MatchStatus.WAITING,)
    )
    assert [m.id for m in by_code] == [waiting.id]
    playing = await sql_store.query(lambda m: True, statuses=(MatchStatus.PLAYING,))
    assert [m.id for m in playing] == [sql_match.id]
    bobs = await sql_store.query(lambda m: True, participant=BOB[0])
    assert [m.id for m in bobs] == [sql_match.id]
    assert await sql_store.query(lambda m: False, participant=BOB[0]) == []


async def test_missing_rows_do_not_keep_locks(sql_store, sql_match):
    await sql_store.delete(sql_match.id)
    assert await sql_store.conditional_update(sql_match.id, lambda m: True, _advance) is False
    assert await sql_store.delete(sql_match.id) is False
    seen = []

    async def on_change(snapshot):
        seen.append(snapshot)

    await sql_store.subscribe(sql_match.id, on_change)
    await sql_store.wait_idle()
    assert seen == [None]
    assert sql_match.id not in sql_store._locks
