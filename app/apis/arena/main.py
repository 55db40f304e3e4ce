from __future__ import annotations

import asyncio
import json
from typing import Any, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from app.apis.arena.schemas import (
    ActiveMatchResponse,
    CreateRoomRequest,
    JoinRoomRequest,
    MatchStateResponse,
    RoomResponse,
    SubmitAnswerRequest,
    SubmitAnswerResponse,
)
from app.apis.deps import (
    Player,
    current_player,
    get_engine,
    get_matchmaking,
    get_store,
)
from app.core.config import settings
from app.core.logging import get_logger
from app.modules.arena.engine import MatchEngine
from app.modules.arena.errors import (
    ArenaError,
    InsufficientVocabulary,
    InvalidRoomCode,
    InvalidTransition,
    NotAuthorized,
    NotReady,
    RoomCodeUnavailable,
    RoomFull,
    RoomNotFound,
    SelfJoin,
    StoreError,
)
from app.modules.arena.matchmaking import MatchmakingService
from app.modules.arena.models import Match, MatchOutcome
from app.modules.arena.session import ClientSession
from app.modules.arena.store import MatchStore

logger = get_logger(__name__)
router = APIRouter()

_PREFIX = f"/{settings.app.version}/arena"

_STATUS_BY_ERROR: dict[type[ArenaError], int] = {
    InsufficientVocabulary: 400,
    InvalidRoomCode: 400,
    RoomNotFound: 404,
    RoomFull: 409,
    SelfJoin: 409,
    RoomCodeUnavailable: 409,
    NotReady: 409,
    InvalidTransition: 409,
    NotAuthorized: 403,
    StoreError: 503,
}


def _raise_http(e: ArenaError) -> NoReturn:
    code = _STATUS_BY_ERROR.get(type(e), 400)
    raise HTTPException(status_code=code, detail={"code": e.code, "message": e.message})


def _ws_url(match_id: str, player: Player) -> str:
    return f"{_PREFIX}/ws/{match_id}?uid={player.uid}"


def _room_response(match: Match, player: Player) -> RoomResponse:
    return RoomResponse(
        match_id=match.id or "",
        room_code=match.room_code,
        ws_url=_ws_url(match.id or "", player),
        state=match,
    )


@router.post(f"{_PREFIX}/rooms", response_model=RoomResponse, tags=["arena"])
async def create_room(
    req: CreateRoomRequest,
    player: Player = Depends(current_player),
    matchmaking: MatchmakingService = Depends(get_matchmaking),
) -> RoomResponse:
    try:
        match = await matchmaking.create_room(player.uid, player.name, req.vocabulary)
    except ArenaError as e:
        _raise_http(e)
    return _room_response(match, player)


@router.post(f"{_PREFIX}/rooms/join", response_model=RoomResponse, tags=["arena"])
async def join_room(
    req: JoinRoomRequest,
    player: Player = Depends(current_player),
    matchmaking: MatchmakingService = Depends(get_matchmaking),
) -> RoomResponse:
    try:
        match = await matchmaking.join_room(req.room_code, player.uid, player.name)
    except ArenaError as e:
        _raise_http(e)
    return _room_response(match, player)


@router.get(
    f"{_PREFIX}/matches/active", response_model=ActiveMatchResponse, tags=["arena"]
)
async def active_match(
    player: Player = Depends(current_player),
    matchmaking: MatchmakingService = Depends(get_matchmaking),
) -> ActiveMatchResponse:
    try:
        match = await matchmaking.find_active_match(player.uid)
    except ArenaError as e:
        _raise_http(e)
    return ActiveMatchResponse(state=match)


@router.get(
    f"{_PREFIX}/matches/{{match_id}}", response_model=MatchStateResponse, tags=["arena"]
)
async def get_match(
    match_id: str,
    player: Player = Depends(current_player),
    store: MatchStore = Depends(get_store),
) -> MatchStateResponse:
    try:
        match = await store.get(match_id)
    except ArenaError as e:
        _raise_http(e)
    if match is None:
        raise HTTPException(status_code=404, detail="Match not found")
    return MatchStateResponse(state=match)


@router.post(
    f"{_PREFIX}/matches/{{match_id}}/start",
    response_model=MatchStateResponse,
    tags=["arena"],
)
async def start_match(
    match_id: str,
    player: Player = Depends(current_player),
    matchmaking: MatchmakingService = Depends(get_matchmaking),
) -> MatchStateResponse:
    try:
        match = await matchmaking.start_match(match_id, player.uid)
    except ArenaError as e:
        _raise_http(e)
    return MatchStateResponse(state=match)


@router.delete(f"{_PREFIX}/matches/{{match_id}}", status_code=204, tags=["arena"])
async def cancel_room(
    match_id: str,
    player: Player = Depends(current_player),
    matchmaking: MatchmakingService = Depends(get_matchmaking),
) -> None:
    try:
        await matchmaking.cancel_room(match_id, player.uid)
    except ArenaError as e:
        _raise_http(e)


@router.post(
    f"{_PREFIX}/matches/{{match_id}}/answers",
    response_model=SubmitAnswerResponse,
    tags=["arena"],
)
async def submit_answer(
    match_id: str,
    req: SubmitAnswerRequest,
    player: Player = Depends(current_player),
    engine: MatchEngine = Depends(get_engine),
) -> SubmitAnswerResponse:
    try:
        outcome = await engine.submit_answer_by_id(
            match_id, player.uid, req.q_index, req.answer
        )
    except ArenaError as e:
        _raise_http(e)
    return SubmitAnswerResponse(outcome=outcome)


# Live session -------------------------------------------------------------
class WebSocketPronouncer:
    """Forwards pronunciation requests to the browser, which owns the speaker."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self._tasks: set[asyncio.Task] = set()

    def pronounce(self, text: str) -> None:
        task = asyncio.create_task(
            self.websocket.send_json(
                {
                    "type": "pronounce",
                    "text": text,
                    "lang": settings.arena.pronounce_lang,
                    "rate": settings.arena.pronounce_rate,
                    "delay_sec": settings.arena.pronounce_delay_sec,
                }
            )
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


@router.websocket(f"{_PREFIX}/ws/{{match_id}}")
async def ws_match(websocket: WebSocket, match_id: str) -> None:
    uid = websocket.query_params.get("uid")
    if not uid:
        await websocket.close(code=4401)
        return
    name = websocket.query_params.get("name") or uid
    state = websocket.app.state
    store: MatchStore = state.match_store
    match = await store.get(match_id)
    if match is None:
        await websocket.close(code=4404)
        return
    if not match.is_participant(uid):
        await websocket.close(code=4403)
        return

    await websocket.accept()

    async def _send_state(snapshot: Optional[Match]) -> None:
        await websocket.send_json(
            {
                "type": "match_state",
                "data": snapshot.model_dump(mode="json") if snapshot else None,
            }
        )

    async def _send_outcome(outcome: MatchOutcome) -> None:
        await websocket.send_json({"type": "outcome", "data": outcome.model_dump(mode="json")})

    session = ClientSession(
        store,
        uid,
        name,
        engine=state.match_engine,
        matchmaking=state.matchmaking,
        pronouncer=WebSocketPronouncer(websocket),
        on_outcome=_send_outcome,
        on_snapshot=_send_state,
        pronounce_delay=0,
    )
    await session.attach(match_id)
    logger.info("WS connected", extra={"match": match_id, "uid": uid})

    try:
        while True:
            try:
                msg: Any = await websocket.receive_json()
            except json.JSONDecodeError:
                await websocket.send_json(
                    {"type": "error", "code": "invalid_message", "message": "Malformed JSON"}
                )
                continue
            if not isinstance(msg, dict) or msg.get("type") != "answer":
                continue
            try:
                outcome = await session.submit_answer(msg.get("answer"))
            except ArenaError as e:
                await websocket.send_json(
                    {"type": "error", "code": e.code, "message": e.message}
                )
                continue
            await websocket.send_json(
                {
                    "type": "answer_result",
                    "data": outcome.model_dump(mode="json") if outcome else None,
                }
            )
    except WebSocketDisconnect:
        logger.info("WS disconnected", extra={"match": match_id, "uid": uid})
    finally:
        session.close()
