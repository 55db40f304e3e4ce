import asyncio

from app.modules.arena.models import MatchStatus

from conftest import ALICE, BOB


async def _collector(store, match_id):
    seen = []

    async def on_change(snapshot):
        seen.append(snapshot)

    unsubscribe = await store.subscribe(match_id, on_change)
    return seen, unsubscribe


async def test_snapshots_are_copies(store, matchmaking, vocab):
    room = await matchmaking.create_room(*ALICE, vocab)
    snap = await store.get(room.id)
    snap.player1.score = 99
    assert (await store.get(room.id)).player1.score == 0


async def test_conditional_update_respects_guard(store, started_match):
    applied = await store.conditional_update(
        started_match.id,
        lambda m: m.q_index == 3,
        lambda m: m,
    )
    assert applied is False
    assert (await store.get(started_match.id)).q_index == 0


async def test_conditional_update_missing_record(store):
    assert await store.conditional_update("nope", lambda m: True, lambda m: m) is False


async def test_concurrent_updates_serialize(store, started_match):
    """Only one of many same-guard writers may win."""

    def patch(m):
        m.player1.score += 10
        m.q_index += 1
        return m

    results = await asyncio.gather(
        *(
            store.conditional_update(started_match.id, lambda m: m.q_index == 0, patch)
            for _ in range(10)
        )
    )
    assert results.count(True) == 1
    latest = await store.get(started_match.id)
    assert latest.q_index == 1
    assert latest.player1.score == 10


async def test_subscriber_gets_initial_snapshot_then_commits_in_order(store, started_match):
    seen, unsubscribe = await _collector(store, started_match.id)

    for i in range(3):
        def patch(m, i=i):
            m.q_index = i + 1
            return m

        await store.conditional_update(started_match.id, lambda m, i=i: m.q_index == i, patch)
    await store.wait_idle()
    assert [s.q_index for s in seen] == [0, 1, 2, 3]
    unsubscribe()


async def test_delete_notifies_none(store, started_match):
    seen, _ = await _collector(store, started_match.id)
    assert await store.delete(started_match.id) is True
    await store.wait_idle()
    assert seen[-1] is None
    assert await store.get(started_match.id) is None
    assert await store.delete(started_match.id) is False


async def test_guarded_delete(store, started_match):
    assert await store.delete(
        started_match.id, guard=lambda m: m.status == MatchStatus.WAITING
    ) is False
    assert await store.get(started_match.id) is not None


async def test_failing_callback_does_not_stop_delivery(store, started_match):
    calls = []

    async def flaky(snapshot):
        calls.append(snapshot)
        if len(calls) == 1:
            raise RuntimeError("boom")

    await store.subscribe(started_match.id, flaky)

    def patch(m):
        m.q_index = 1
        return m

    await store.conditional_update(started_match.id, lambda m: True, patch)
    await store.wait_idle()
    assert [c.q_index for c in calls] == [0, 1]


async def test_unsubscribe_from_inside_callback(store, started_match):
    seen = []
    handle = {}

    async def once(snapshot):
        seen.append(snapshot)
        handle["unsubscribe"]()

    handle["unsubscribe"] = await store.subscribe(started_match.id, once)
    await store.wait_idle()

    def patch(m):
        m.q_index = 1
        return m

    await store.conditional_update(started_match.id, lambda m: True, patch)
    await store.wait_idle()
    assert len(seen) == 1
    assert store.subscribers.count(started_match.id) == 0


async def test_query_filters(store, matchmaking, vocab):
    await matchmaking.create_room(*ALICE, vocab)
    await matchmaking.create_room(*BOB, vocab)
    mine = await store.query(lambda m: m.player1.uid == ALICE[0])
    assert len(mine) == 1


async def test_query_hints_narrow_candidates(store, matchmaking, vocab):
    room = await matchmaking.create_room(*ALICE, vocab)
    await matchmaking.create_room(*BOB, vocab)
    by_code = await store.query(
        lambda m: True, room_code=room.room_code, statuses=(MatchStatus.WAITING,)
    )
    assert [m.id for m in by_code] == [room.id]
    assert await store.query(lambda m: True, statuses=(MatchStatus.PLAYING,)) == []
    mine = await store.query(lambda m: True, participant=BOB[0])
    assert [m.player1.uid for m in mine] == [BOB[0]]


async def test_commit_between_read_and_register_is_delivered(store, started_match, monkeypatch):
    """A commit racing subscribe must reach the new subscriber."""
    real_get = store.get
    racing = []

    def advance(m):
        m.q_index = 1
        return m

    async def slow_get(match_id):
        snapshot = await real_get(match_id)
        if not racing:
            racing.append(
                asyncio.create_task(
                    store.conditional_update(match_id, lambda m: m.q_index == 0, advance)
                )
            )
            await asyncio.sleep(0.01)
        return snapshot

    monkeypatch.setattr(store, "get", slow_get)
    seen, unsubscribe = await _collector(store, started_match.id)
    assert await racing[0] is True
    await store.wait_idle()
    assert [s.q_index for s in seen] == [0, 1]
    unsubscribe()


async def test_missing_records_do_not_keep_locks(store, started_match):
    await store.delete(started_match.id)
    assert await store.conditional_update(started_match.id, lambda m: True, lambda m: m) is False
    assert await store.delete(started_match.id) is False
    seen, unsubscribe = await _collector(store, started_match.id)
    await store.wait_idle()
    assert seen == [None]
    assert started_match.id not in store._locks
    unsubscribe()
