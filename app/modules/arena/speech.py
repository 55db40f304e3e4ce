"""Pronunciation side channel.

``pronounce(text)`` is fire-and-forget: no return value, no ordering
guarantee, and environments without speech support use ``NullPronouncer``.
"""

from __future__ import annotations

from typing import Protocol

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


class Pronouncer(Protocol):
    def pronounce(self, text: str) -> None: ...


class NullPronouncer:
    def pronounce(self, text: str) -> None:
        return None


class LoggingPronouncer:
    """Records what would be spoken; handy for headless clients and tests."""

    def __init__(self, lang: str | None = None, rate: float | None = None) -> None:
        self.lang = lang or settings.arena.pronounce_lang
        self.rate = rate if rate is not None else settings.arena.pronounce_rate
        self.spoken: list[str] = []

    def pronounce(self, text: str) -> None:
        self.spoken.append(text)
        logger.debug(f"pronounce [{self.lang} x{self.rate}]: {text}")
