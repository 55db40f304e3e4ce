"""Shared match record store.

The engine only depends on the ``MatchStore`` protocol below. Its single
concurrency primitive is ``conditional_update``: read the record, evaluate a
guard on the current value and, if it holds, apply a patch and commit the
whole record as one step.

``InMemoryMatchStore`` keeps records in-process (one asyncio.Lock per
record). Subscribers get every committed snapshot of the record they watch,
in commit order, through a per-subscriber queue drained by its own task.
Commits publish while still holding the record lock, and ``subscribe`` reads
the initial snapshot under the same lock, so a new subscriber never misses a
commit.

``query`` takes a predicate plus optional ``room_code`` / ``statuses`` /
``participant`` hints. The hints narrow the candidate set (a SQL store turns
them into indexed WHERE clauses); the predicate is always applied on top.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable, Optional, Protocol
from uuid import uuid4

from app.core.logging import get_logger
from app.modules.arena.models import Match, MatchStatus

logger = get_logger(__name__)

Guard = Callable[[Match], bool]
Patch = Callable[[Match], Match]
Predicate = Callable[[Match], bool]
OnChange = Callable[[Optional[Match]], Awaitable[None]]
Unsubscribe = Callable[[], None]


class MatchStore(Protocol):
    async def create(self, match: Match) -> str: ...

    async def get(self, match_id: str) -> Optional[Match]: ...

    async def query(
        self,
        predicate: Predicate,
        *,
        room_code: Optional[str] = None,
        statuses: Optional[Iterable[MatchStatus]] = None,
        participant: Optional[str] = None,
    ) -> list[Match]: ...

    async def subscribe(self, match_id: str, on_change: OnChange) -> Unsubscribe: ...

    async def conditional_update(
        self, match_id: str, guard: Guard, patch: Patch
    ) -> bool: ...

    async def delete(self, match_id: str, guard: Optional[Guard] = None) -> bool: ...


def matches_hints(
    match: Match,
    room_code: Optional[str] = None,
    statuses: Optional[Iterable[MatchStatus]] = None,
    participant: Optional[str] = None,
) -> bool:
    """Python-side version of the column filters a SQL store pushes into WHERE."""
    if room_code is not None and match.room_code != room_code:
        return False
    if statuses is not None and match.status not in set(statuses):
        return False
    if participant is not None and not match.is_participant(participant):
        return False
    return True


_CLOSED = object()


class _Subscription:
    def __init__(self, match_id: str, on_change: OnChange) -> None:
        self.match_id = match_id
        self.on_change = on_change
        self.closed = False
        self._busy = False
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._task = asyncio.create_task(self._pump())

    def push(self, snapshot: Optional[Match]) -> None:
        if self.closed:
            return
        self._queue.put_nowait(snapshot.model_copy(deep=True) if snapshot else None)

    def close(self) -> None:
        # Safe to call from inside on_change: the pump exits after the
        # current callback instead of being cancelled mid-await.
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(_CLOSED)

    def cancel(self) -> None:
        self.closed = True
        self._task.cancel()

    @property
    def pending(self) -> bool:
        return self._busy or not self._queue.empty()

    async def idle(self) -> None:
        await self._queue.join()

    async def _pump(self) -> None:
        while True:
            item = await self._queue.get()
            self._busy = True
            try:
                if item is _CLOSED or self.closed:
                    break
                await self.on_change(item)  # type: ignore[arg-type]
            except Exception:
                logger.exception(
                    "Subscriber callback failed", extra={"match": self.match_id}
                )
            finally:
                self._busy = False
                self._queue.task_done()
        # drop anything queued after close so idle() never blocks
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()


class Subscribers:
    """Tracks change listeners per match id."""

    def __init__(self) -> None:
        self._by_match: dict[str, list[_Subscription]] = {}

    def add(
        self, match_id: str, on_change: OnChange, initial: Optional[Match]
    ) -> Unsubscribe:
        sub = _Subscription(match_id, on_change)
        self._by_match.setdefault(match_id, []).append(sub)
        sub.push(initial)

        def _unsubscribe() -> None:
            sub.close()
            subs = self._by_match.get(match_id)
            if subs and sub in subs:
                subs.remove(sub)
                if not subs:
                    self._by_match.pop(match_id, None)

        return _unsubscribe

    def publish(self, match_id: str, snapshot: Optional[Match]) -> None:
        for sub in list(self._by_match.get(match_id, [])):
            sub.push(snapshot)

    def count(self, match_id: str) -> int:
        return len(self._by_match.get(match_id, []))

    async def wait_idle(self) -> None:
        """Wait until every queued notification has been delivered.

        Callbacks may commit new changes, so loop until nothing is pending.
        """
        while True:
            subs = [s for subs in self._by_match.values() for s in subs]
            pending = [s for s in subs if s.pending]
            if not pending:
                return
            await asyncio.gather(*(s.idle() for s in pending))

    def close(self) -> None:
        for subs in self._by_match.values():
            for sub in subs:
                sub.cancel()
        self._by_match.clear()


class InMemoryMatchStore:
    """Process-local store; every snapshot handed out is a deep copy."""

    def __init__(self) -> None:
        self._records: dict[str, Match] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self.subscribers = Subscribers()

    def _lock_for(self, match_id: str) -> asyncio.Lock:
        lock = self._locks.get(match_id)
        if lock is None:
            lock = self._locks[match_id] = asyncio.Lock()
        return lock

    async def create(self, match: Match) -> str:
        match_id = uuid4().hex
        record = match.model_copy(deep=True, update={"id": match_id})
        self._records[match_id] = record
        logger.debug("Match record created", extra={"match": match_id})
        return match_id

    async def get(self, match_id: str) -> Optional[Match]:
        record = self._records.get(match_id)
        return record.model_copy(deep=True) if record else None

    async def query(
        self,
        predicate: Predicate,
        *,
        room_code: Optional[str] = None,
        statuses: Optional[Iterable[MatchStatus]] = None,
        participant: Optional[str] = None,
    ) -> list[Match]:
        return [
            m.model_copy(deep=True)
            for m in list(self._records.values())
            if matches_hints(m, room_code, statuses, participant) and predicate(m)
        ]

    async def subscribe(self, match_id: str, on_change: OnChange) -> Unsubscribe:
        # read and register under the record lock so no commit slips between
        async with self._lock_for(match_id):
            initial = await self.get(match_id)
            if initial is None:
                self._locks.pop(match_id, None)
            return self.subscribers.add(match_id, on_change, initial)

    async def conditional_update(
        self, match_id: str, guard: Guard, patch: Patch
    ) -> bool:
        async with self._lock_for(match_id):
            current = self._records.get(match_id)
            if current is None:
                self._locks.pop(match_id, None)
                return False
            if not guard(current.model_copy(deep=True)):
                return False
            updated = patch(current.model_copy(deep=True))
            # re-validate the whole record before it becomes visible
            updated = Match.model_validate(updated.model_dump())
            updated.id = match_id
            self._records[match_id] = updated
            self.subscribers.publish(match_id, updated)
        return True

    async def delete(self, match_id: str, guard: Optional[Guard] = None) -> bool:
        async with self._lock_for(match_id):
            current = self._records.get(match_id)
            if current is None:
                self._locks.pop(match_id, None)
                return False
            if guard is not None and not guard(current.model_copy(deep=True)):
                return False
            del self._records[match_id]
            self.subscribers.publish(match_id, None)
        self._locks.pop(match_id, None)
        logger.debug("Match record deleted", extra={"match": match_id})
        return True

    async def wait_idle(self) -> None:
        await self.subscribers.wait_idle()

    async def aclose(self) -> None:
        self.subscribers.close()
