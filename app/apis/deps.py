from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from app.modules.arena.engine import MatchEngine
from app.modules.arena.matchmaking import MatchmakingService
from app.modules.arena.store import MatchStore


@dataclass(frozen=True)
class Player:
    uid: str
    name: str


async def current_player(
    x_player_uid: Optional[str] = Header(default=None),
    x_player_name: Optional[str] = Header(default=None),
) -> Player:
    """Resolve the caller from ``X-Player-Uid`` / ``X-Player-Name``.

    Identity is supplied by the surrounding app; nothing is verified here.
    """
    uid = (x_player_uid or "").strip()
    if not uid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Player-Uid"
        )
    name = (x_player_name or "").strip() or uid
    return Player(uid=uid, name=name)


def get_store(request: Request) -> MatchStore:
    return request.app.state.match_store


def get_matchmaking(request: Request) -> MatchmakingService:
    return request.app.state.matchmaking


def get_engine(request: Request) -> MatchEngine:
    return request.app.state.match_engine
