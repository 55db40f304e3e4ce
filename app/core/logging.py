"""Process logging for the arena service.

Log lines carry the match id and player uid passed through ``extra=``;
``ArenaContextFilter`` fills ``-`` for records that do not set them.
"""

import logging
from typing import Optional

from app.core.config import settings


CONTEXT_FIELDS = ("match", "uid")
ARENA_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [match=%(match)s uid=%(uid)s] %(message)s"
# driver loggers that are noisy at DEBUG
QUIET_LOGGERS = ("aiosqlite",)


class ArenaContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        for field in CONTEXT_FIELDS:
            if getattr(record, field, None) is None:
                setattr(record, field, "-")
        return True


class _ArenaHandler(logging.StreamHandler):
    """Marker type so setup can find the handler it installed earlier."""


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> logging.Handler:
    """Install (or replace) the arena stream handler on the root logger.

    Handlers added by others, e.g. uvicorn or pytest's caplog, are left alone.
    """
    resolved = logging.getLevelName((level or settings.log_level).upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO

    root = logging.getLogger()
    root.setLevel(resolved)
    for existing in [h for h in root.handlers if isinstance(h, _ArenaHandler)]:
        root.removeHandler(existing)

    handler = _ArenaHandler()
    handler.setFormatter(logging.Formatter(fmt or ARENA_FORMAT))
    handler.addFilter(ArenaContextFilter())
    root.addHandler(handler)

    if resolved > logging.DEBUG:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
    return handler


def get_logger(name: str) -> logging.Logger:
    if not any(isinstance(h, _ArenaHandler) for h in logging.getLogger().handlers):
        setup_logging()
    return logging.getLogger(name)
