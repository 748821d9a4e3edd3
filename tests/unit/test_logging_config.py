"""
Unit tests for logging configuration helpers.
"""
import asyncio
import json
import logging
import sys

import pytest

from republisher.core.logging_config import ContextFilter, StructuredFormatter, log_context


def make_record(message: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("republisher.test", logging.INFO, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.mark.unit
class TestLogContext:
    """Test cases for job context on log records."""

    def test_context_applied_and_reset(self):
        context_filter = ContextFilter()

        with log_context(series_id=3):
            with log_context(episode_id=41):
                inner = make_record()
                context_filter.filter(inner)
            outer = make_record()
            context_filter.filter(outer)
        after = make_record()
        context_filter.filter(after)

        assert (inner.series_id, inner.episode_id) == (3, 41)
        assert outer.series_id == 3 and not hasattr(outer, "episode_id")
        assert not hasattr(after, "series_id")

    @pytest.mark.asyncio
    async def test_concurrent_tasks_keep_separate_context(self):
        context_filter = ContextFilter()
        seen = {}

        async def work(episode_id: int):
            with log_context(episode_id=episode_id):
                await asyncio.sleep(0)
                record = make_record()
                context_filter.filter(record)
                seen[episode_id] = record.episode_id

        await asyncio.gather(work(1), work(2))

        assert seen == {1: 1, 2: 2}


@pytest.mark.unit
class TestStructuredFormatter:
    """Test cases for JSON log lines."""

    def test_job_ids_lifted_to_top_level(self):
        record = make_record("Uploading", upload_id=7, episode_id=41, attempt=2)

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["message"] == "Uploading"
        assert entry["upload_id"] == 7
        assert entry["episode_id"] == 41
        assert entry["extra"] == {"attempt": 2}
        assert "exception" not in entry

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["exception"]["type"] == "RuntimeError"
        assert entry["exception"]["message"] == "boom"
