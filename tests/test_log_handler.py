"""Tests for the in-memory log buffer."""
import logging

import pytest

from recall_db.errors import ValidationError
from recall_db.log_handler import LOG_FORMAT, MemoryLogHandler, parse_level

@pytest.fixture
def handler():
    """Attach a fresh buffer to a private logger tree."""
    handler = MemoryLogHandler(capacity=3)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger = logging.getLogger("buffer_test")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    logger.addHandler(handler)
    yield handler
    logger.removeHandler(handler)

def test_keeps_newest_entries(handler):
    log = logging.getLogger("buffer_test")
    for i in range(5):
        log.info(f"message {i}")

    entries = handler.recent(10)
    assert handler.capacity == 3
    assert [e["message"].rsplit(" - ", 1)[-1] for e in entries] == ["message 2", "message 3", "message 4"]
    assert entries[0]["level"] == "INFO"
    assert entries[0]["logger"] == "buffer_test"
    assert entries[0]["timestamp"].endswith("+00:00")
    assert handler.recent(0) == []
    assert len(handler.recent(2)) == 2

def test_level_and_logger_filters(handler):
    logging.getLogger("buffer_test.storage").warning("slow commit")
    logging.getLogger("buffer_test.api").debug("request")
    logging.getLogger("buffer_test_other").error("not ours")

    assert [e["logger"] for e in handler.recent(10, min_level="warning")] == ["buffer_test.storage"]
    assert [e["logger"] for e in handler.recent(10, logger_prefix="buffer_test.api")] == ["buffer_test.api"]
    assert handler.recent(10, logger_prefix="buffer") == []

def test_clear(handler):
    logging.getLogger("buffer_test").info("gone soon")
    handler.clear()
    assert handler.recent(10) == []

def test_parse_level():
    assert parse_level(None) == logging.NOTSET
    assert parse_level("error") == logging.ERROR
    with pytest.raises(ValidationError):
        parse_level("loud")
    with pytest.raises(ValidationError):
        MemoryLogHandler(capacity=0)
