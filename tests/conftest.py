"""Pytest configuration and fixtures for scopelog tests.

Provides trackers writing to in-memory streams, a provenance factory so
tests control scope identifiers exactly, and cleanup of the global
diagnostic logging and default tracker between tests.
"""

import io
import logging

import pytest

from scopelog.config import TrackerConfig, reset_tracker
from scopelog.observability.logging import (
    StructuredLogger,
    configure_logging,
    reset_logging,
)
from scopelog.tracker import Provenance, ScopeTracker

TEST_FILE = "test_file.py"


def make_provenance(component: str, operation: str, line: int = 1) -> Provenance:
    """Build a provenance for ``component.operation`` in TEST_FILE.

    Example:
        >>> make_provenance("A", "run").scope_id
        'A.run'
    """
    return Provenance(TEST_FILE, line, component, operation)


@pytest.fixture(autouse=True)
def _reset_globals():
    """Reset diagnostic logging and the default tracker around every test.

    Yields:
        None.
    """
    reset_logging()
    reset_tracker()
    yield
    reset_logging()
    reset_tracker()


@pytest.fixture
def stream() -> io.StringIO:
    """In-memory stream receiving tracker output."""
    return io.StringIO()


@pytest.fixture
def tracker(stream: io.StringIO) -> ScopeTracker:
    """Development-mode tracker writing to ``stream``."""
    return ScopeTracker(TrackerConfig(), stream=stream)


@pytest.fixture
def diagnostics() -> io.StringIO:
    """Capture scopelog's own diagnostic log at DEBUG level.

    Returns:
        io.StringIO receiving formatted diagnostic records.
    """
    buffer = io.StringIO()
    configure_logging(level=logging.DEBUG, stream=buffer, force=True)
    return buffer


@pytest.fixture
def prov():
    """Factory building provenances in TEST_FILE (see make_provenance)."""
    return make_provenance


@pytest.fixture
def host_logger_name():
    """Register a plain ``logging.Logger`` under the scopelog namespace.

    Mirrors a host application creating the logger before scopelog
    installs StructuredLogger as the logger class.

    Yields:
        Name of the pre-created plain logger.
    """
    name = "scopelog.hostmade"
    manager = logging.Logger.manager
    previous = manager.loggerDict.pop(name, None)
    logger_class = logging.getLoggerClass()
    logging.setLoggerClass(logging.Logger)
    try:
        plain = logging.getLogger(name)
    finally:
        logging.setLoggerClass(logger_class)
    assert not isinstance(plain, StructuredLogger)
    yield name
    manager.loggerDict.pop(name, None)
    if previous is not None:
        manager.loggerDict[name] = previous
