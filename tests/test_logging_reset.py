"""Unit tests for diagnostic logging reset.

Infrastructure-focused testing for reset_logging and _reset_logging_impl:
cleanup, idempotency, thread safety and reconfiguration.
"""

import io
import logging
import threading
from unittest.mock import MagicMock

from scopelog.observability import logging as log_module
from scopelog.observability.logging import (
    ROOT_LOGGER_NAME,
    StructuredLogger,
    configure_logging,
    get_logger,
    reset_logging,
)


def root_logger() -> logging.Logger:
    return logging.getLogger(ROOT_LOGGER_NAME)


class TestResetLoggingBasic:
    """Basic reset_logging functionality tests."""

    def test_reset_clears_configured_flag(self):
        """Verifies reset_logging sets the _configured flag to False.

        Arrangement:
        1. configure_logging() sets _configured=True.

        Action:
        Configures logging, resets, checks the flag.

        Assertion Strategy:
        - _configured is True after configure and False after reset.

        Testing Principle:
        Validates that reset allows the next configure to take effect.
        """
        configure_logging(level=logging.INFO, stream=io.StringIO(), force=True)
        assert log_module._configured is True

        reset_logging()

        assert log_module._configured is False

    def test_reset_removes_and_closes_handlers(self):
        """Verifies every handler is detached and closed."""
        configure_logging(stream=io.StringIO(), force=True)
        extra = MagicMock(spec=logging.Handler)
        extra.level = logging.NOTSET
        root_logger().addHandler(extra)

        reset_logging()

        assert root_logger().handlers == []
        extra.close.assert_called_once()

    def test_reset_when_not_configured(self):
        reset_logging()
        reset_logging()

        assert log_module._configured is False
        assert root_logger().handlers == []

    def test_reset_preserves_other_loggers(self):
        other = logging.getLogger("unrelated.reset.test")
        handler = logging.NullHandler()
        other.addHandler(handler)
        try:
            configure_logging(stream=io.StringIO(), force=True)
            reset_logging()

            assert handler in other.handlers
        finally:
            other.removeHandler(handler)


class TestResetLoggingIntegration:
    """Reset followed by reconfiguration."""

    def test_reset_enables_reconfiguration(self):
        """Verifies a new stream takes effect after reset.

        Arrangement:
        1. Logging configured to stream ``first``.

        Action:
        Resets, configures to ``second`` and logs a warning.

        Assertion Strategy:
        - Only ``second`` receives the record.

        Testing Principle:
        Validates that tests can redirect diagnostics freely.
        """
        first, second = io.StringIO(), io.StringIO()
        configure_logging(stream=first, force=True)

        reset_logging()
        configure_logging(stream=second)
        get_logger("scopelog.reset").warning("after reset", step=2)

        assert first.getvalue() == ""
        assert "after reset | step=2" in second.getvalue()

    def test_loggers_stay_structured_after_reset(self):
        logger = get_logger("scopelog.reset.structured")

        reset_logging()

        assert isinstance(logger, StructuredLogger)
        assert isinstance(get_logger("scopelog.reset.structured"), StructuredLogger)

    def test_get_logger_reconfigures_lazily(self):
        reset_logging()

        get_logger("scopelog.reset.lazy")

        assert log_module._configured is True
        assert len(root_logger().handlers) == 1


class TestResetLoggingThreadSafety:
    """Concurrent reset and configure calls."""

    def test_concurrent_reset_and_configure(self):
        """Verifies interleaved calls never leave duplicate handlers.

        Arrangement:
        1. Ten threads alternating configure_logging and reset_logging.

        Action:
        Runs all threads, then configures once more.

        Assertion Strategy:
        - No thread raised.
        - Exactly one handler after the final configure.

        Testing Principle:
        Validates the module lock around configuration state.
        """
        errors: list[BaseException] = []

        def worker():
            try:
                for _ in range(20):
                    configure_logging(stream=io.StringIO())
                    reset_logging()
            except BaseException as exc:  # pragma: no cover
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        configure_logging(stream=io.StringIO(), force=True)

        assert errors == []
        assert len(root_logger().handlers) == 1


class TestInternalResetImpl:
    """Tests for the lock-free implementation function."""

    def test_reset_impl_clears_state(self):
        configure_logging(stream=io.StringIO(), force=True)

        with log_module._config_lock:
            log_module._reset_logging_impl()

        assert log_module._configured is False
        assert root_logger().handlers == []
