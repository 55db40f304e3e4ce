from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

from app.modules.arena.models import AnswerOutcome, Match, VocabularyItem


class CreateRoomRequest(BaseModel):
    vocabulary: list[VocabularyItem] = Field(
        ..., description="Catalog entries the questions are drawn from"
    )


class JoinRoomRequest(BaseModel):
    room_code: str


class RoomResponse(BaseModel):
    match_id: str
    room_code: str
    ws_url: str
    state: Match


class MatchStateResponse(BaseModel):
    state: Match


class ActiveMatchResponse(BaseModel):
    state: Optional[Match] = None


class SubmitAnswerRequest(BaseModel):
    q_index: int = Field(..., ge=0)
    answer: Any = None


class SubmitAnswerResponse(BaseModel):
    outcome: AnswerOutcome
