"""
Unit tests for logging.py module.

Tests structlog context binding used by the CLI.
"""

import structlog

from finsched.logging import bind_context, clear_context, get_logger


class TestContext:
    """Tests for bind_context / clear_context."""

    def test_bind_and_clear(self):
        clear_context()

        bind_context(command="extend-year", db="finsched.db")
        bound = structlog.contextvars.get_contextvars()
        clear_context()

        assert bound == {"command": "extend-year", "db": "finsched.db"}
        assert structlog.contextvars.get_contextvars() == {}

    def test_get_logger_cached(self):
        assert get_logger("finsched.test") is get_logger("finsched.test")
