from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    DateTime,
    Integer,
    String,
    JSON,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db.base import Base


class MatchRecord(Base):
    """One arena match. ``payload`` holds the full Match document; the other
    columns are denormalized for lookups. ``version`` increases on every
    committed write and is the compare-and-swap token."""

    __tablename__ = "arena_matches"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    room_code: Mapped[str] = mapped_column(String(6), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String, nullable=False, index=True)
    player1_uid: Mapped[str] = mapped_column(String, nullable=False, index=True)
    player2_uid: Mapped[Optional[str]] = mapped_column(
        String, nullable=True, index=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )


__all__ = ["MatchRecord"]
