"""SQLAlchemy-backed match store.

Each match is one row in ``arena_matches``. ``conditional_update`` is an
optimistic transaction: read the row, evaluate the guard on the decoded
Match, then ``UPDATE ... WHERE id = :id AND version = :seen``. Zero affected
rows means another writer committed first; the guard is re-evaluated on a
fresh read, so a stale ``q_index`` guard fails instead of overwriting.

Change notifications are delivered in-process after each commit, so
subscribers must live in the same process as the writers. A per-record
asyncio.Lock keeps those notifications in commit order, and ``subscribe``
reads its initial snapshot under the same lock.

``query`` pushes the room_code / status / participant hints into the WHERE
clause (all indexed columns) and only decodes the rows that match them.
"""

from __future__ import annotations

import asyncio
from typing import Iterable, Optional
from uuid import uuid4

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.db.schemas.arena import MatchRecord
from app.core.logging import get_logger
from app.modules.arena.errors import StoreError
from app.modules.arena.models import Match, MatchStatus
from app.modules.arena.store import (
    Guard,
    OnChange,
    Patch,
    Predicate,
    Subscribers,
    Unsubscribe,
)

logger = get_logger(__name__)


def _columns(match: Match) -> dict:
    return {
        "room_code": match.room_code,
        "status": match.status.value,
        "player1_uid": match.player1.uid,
        "player2_uid": match.player2.uid if match.player2 else None,
        "payload": match.model_dump(mode="json"),
    }


def _decode(row: MatchRecord) -> Match:
    match = Match.model_validate(row.payload)
    match.id = row.id
    return match


class SqlMatchStore:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        max_attempts: Optional[int] = None,
    ) -> None:
        self._session_maker = session_maker
        self.max_attempts = max(1, int(max_attempts or settings.arena.store_commit_retries))
        self.subscribers = Subscribers()
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, match_id: str) -> asyncio.Lock:
        lock = self._locks.get(match_id)
        if lock is None:
            lock = self._locks[match_id] = asyncio.Lock()
        return lock

    async def create(self, match: Match) -> str:
        match_id = uuid4().hex
        record = match.model_copy(deep=True, update={"id": match_id})
        try:
            async with self._session_maker() as session:
                session.add(
                    MatchRecord(
                        id=match_id,
                        version=1,
                        created_at=record.created_at,
                        **_columns(record),
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"create failed: {e}") from e
        logger.debug("Match row inserted", extra={"match": match_id})
        return match_id

    async def get(self, match_id: str) -> Optional[Match]:
        try:
            async with self._session_maker() as session:
                row = await session.get(MatchRecord, match_id)
                return _decode(row) if row else None
        except SQLAlchemyError as e:
            raise StoreError(f"get failed: {e}") from e

    async def query(
        self,
        predicate: Predicate,
        *,
        room_code: Optional[str] = None,
        statuses: Optional[Iterable[MatchStatus]] = None,
        participant: Optional[str] = None,
    ) -> list[Match]:
        stmt = select(MatchRecord)
        if room_code is not None:
            stmt = stmt.where(MatchRecord.room_code == room_code)
        if statuses is not None:
            stmt = stmt.where(MatchRecord.status.in_([s.value for s in statuses]))
        if participant is not None:
            stmt = stmt.where(
                or_(
                    MatchRecord.player1_uid == participant,
                    MatchRecord.player2_uid == participant,
                )
            )
        try:
            async with self._session_maker() as session:
                res = await session.execute(stmt.order_by(MatchRecord.created_at))
                rows = res.scalars().all()
        except SQLAlchemyError as e:
            raise StoreError(f"query failed: {e}") from e
        return [m for m in (_decode(r) for r in rows) if predicate(m)]

    async def subscribe(self, match_id: str, on_change: OnChange) -> Unsubscribe:
        async with self._lock_for(match_id):
            initial = await self.get(match_id)
            if initial is None:
                self._locks.pop(match_id, None)
            return self.subscribers.add(match_id, on_change, initial)

    async def conditional_update(
        self, match_id: str, guard: Guard, patch: Patch
    ) -> bool:
        async with self._lock_for(match_id):
            for attempt in range(1, self.max_attempts + 1):
                applied = await self._try_update(match_id, guard, patch)
                if applied is not None:
                    return applied
                logger.warning(
                    f"Concurrent write detected (attempt {attempt}/{self.max_attempts})",
                    extra={"match": match_id},
                )
        raise StoreError("conditional update kept conflicting")

    async def _try_update(
        self, match_id: str, guard: Guard, patch: Patch
    ) -> Optional[bool]:
        """One optimistic attempt; ``None`` means another writer won the race."""
        try:
            async with self._session_maker() as session:
                row = await session.get(MatchRecord, match_id)
                if row is None:
                    self._locks.pop(match_id, None)
                    return False
                seen = row.version
                current = _decode(row)
                if not guard(current.model_copy(deep=True)):
                    return False
                updated = Match.model_validate(patch(current).model_dump())
                updated.id = match_id
                res = await session.execute(
                    update(MatchRecord)
                    .where(MatchRecord.id == match_id, MatchRecord.version == seen)
                    .values(version=seen + 1, **_columns(updated))
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"conditional update failed: {e}") from e
        if res.rowcount != 1:
            return None
        self.subscribers.publish(match_id, updated)
        return True

    async def delete(self, match_id: str, guard: Optional[Guard] = None) -> bool:
        async with self._lock_for(match_id):
            for _ in range(self.max_attempts):
                deleted = await self._try_delete(match_id, guard)
                if deleted is not None:
                    if deleted:
                        self._locks.pop(match_id, None)
                    return deleted
        raise StoreError("delete kept conflicting")

    async def _try_delete(self, match_id: str, guard: Optional[Guard]) -> Optional[bool]:
        try:
            async with self._session_maker() as session:
                row = await session.get(MatchRecord, match_id)
                if row is None:
                    self._locks.pop(match_id, None)
                    return False
                if guard is not None and not guard(_decode(row)):
                    return False
                res = await session.execute(
                    delete(MatchRecord)
                    .where(
                        MatchRecord.id == match_id,
                        MatchRecord.version == row.version,
                    )
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"delete failed: {e}") from e
        if res.rowcount != 1:
            return None
        self.subscribers.publish(match_id, None)
        logger.debug("Match row deleted", extra={"match": match_id})
        return True

    async def wait_idle(self) -> None:
        await self.subscribers.wait_idle()

    async def aclose(self) -> None:
        self.subscribers.close()
