import logging

import pytest

from app.core.logging import get_logger, setup_logging


@pytest.fixture()
def root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def test_setup_twice_keeps_one_handler(root_logger):
    foreign = logging.NullHandler()
    root_logger.addHandler(foreign)
    first = setup_logging("debug")
    second = setup_logging("warning")
    assert root_logger.level == logging.WARNING
    assert foreign in root_logger.handlers
    assert first not in root_logger.handlers
    assert root_logger.handlers.count(second) == 1


def test_unknown_level_falls_back_to_info(root_logger):
    setup_logging("chatty")
    assert root_logger.level == logging.INFO


def test_records_without_context_format(root_logger):
    handler = setup_logging("info")
    record = logging.LogRecord("arena", logging.INFO, __file__, 1, "hello", None, None)
    assert handler.filter(record)
    line = handler.format(record)
    assert "match=- uid=-" in line
    assert line.endswith("hello")


def test_context_from_extra(root_logger):
    handler = setup_logging("info")
    record = get_logger("arena.test").makeRecord(
        "arena.test", logging.INFO, __file__, 1, "joined", None, None,
        extra={"match": "m1", "uid": "u1"},
    )
    assert handler.filter(record)
    assert "match=m1 uid=u1" in handler.format(record)
