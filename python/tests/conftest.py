"""Pytest configuration and fixtures for doppelganger_py tests."""

import logging
import os
import sys
import threading
import time
from typing import Iterable, List, Optional

import pytest

log = logging.getLogger(__name__)


# ---- Scripted sources (used by fixtures and tests) ----


class ChunkedSource:
    """Source with a read() that hands out scripted chunks, then b"" forever.

    A chunk longer than the requested size is split across reads.
    """

    def __init__(self, chunks: Iterable[bytes]):
        self._chunks: List[bytes] = [bytes(c) for c in chunks]
        self.reads = 0
        self.closed = False

    def read(self, size: int = -1) -> bytes:
        self.reads += 1
        if not self._chunks:
            return b""
        chunk = self._chunks.pop(0)
        if 0 <= size < len(chunk):
            self._chunks.insert(0, chunk[size:])
            chunk = chunk[:size]
        return chunk

    def close(self) -> None:
        self.closed = True


class FailAfterNSource:
    """Source that delivers exactly n random bytes, then raises or ends."""

    def __init__(self, n: int, error: Optional[Exception] = None):
        self._remaining = n
        self._error = error
        self.reads = 0

    def readinto(self, b) -> int:
        self.reads += 1
        if self._remaining <= 0:
            if self._error is not None:
                raise self._error
            return 0
        n = min(len(b), self._remaining)
        b[:n] = os.urandom(n)
        self._remaining -= n
        return n


class RandomSource:
    """Unbounded source of random bytes that detects concurrent reads."""

    def __init__(self, delay: float = 0.0):
        self._delay = delay
        self._busy = False
        self.reads = 0
        self.concurrent_reads = 0
        self.delivered = 0

    def readinto(self, b) -> int:
        if self._busy:
            self.concurrent_reads += 1
        self._busy = True
        try:
            self.reads += 1
            if self._delay:
                time.sleep(self._delay)
            # Short reads, as a network stream would give.
            n = max(1, min(len(b), 7))
            b[:n] = os.urandom(n)
            self.delivered += n
            return n
        finally:
            self._busy = False


class NonBlockingSource:
    """Source whose readinto() returns None until data is fed to it."""

    def __init__(self):
        self._pending = bytearray()
        self._eof = False
        self._lock = threading.Lock()

    def feed(self, data: bytes) -> None:
        with self._lock:
            self._pending += data

    def finish(self) -> None:
        self._eof = True

    def readinto(self, b) -> Optional[int]:
        with self._lock:
            if not self._pending:
                return 0 if self._eof else None
            n = min(len(b), len(self._pending))
            b[:n] = self._pending[:n]
            del self._pending[:n]
            return n


# ---- Fixtures (inject helpers so tests need not import conftest) ----


@pytest.fixture
def chunked_source():
    """Fixture that returns the ChunkedSource class."""
    return ChunkedSource


@pytest.fixture
def fail_after_n_source():
    """Fixture that returns the FailAfterNSource class."""
    return FailAfterNSource


@pytest.fixture
def random_source():
    """Fresh unbounded random source."""
    return RandomSource()


@pytest.fixture
def slow_random_source():
    """Unbounded random source that takes a moment per read."""
    return RandomSource(delay=0.001)


@pytest.fixture
def non_blocking_source():
    """Fresh non-blocking source with no data yet."""
    return NonBlockingSource()


# ---- Debug log buffer (print on failure) ----

_DEBUG_LOG_NAMES = (
    "doppelganger_py",
    "test_reader",
    "tests.test_reader",
    "test_concurrent",
    "tests.test_concurrent",
)

# Buffer of recent log records (format strings) for display on failure
_debug_log_buffer = []
_DEBUG_BUFFER_MAX = 500


class _DebugBufferHandler(logging.Handler):
    """Buffer log records so we can print them when a test fails."""

    def emit(self, record):
        try:
            msg = self.format(record)
            _debug_log_buffer.append(msg)
            # keep buffer bounded
            while len(_debug_log_buffer) > _DEBUG_BUFFER_MAX:
                _debug_log_buffer.pop(0)
        except Exception:
            self.handleError(record)


def _install_debug_buffer():
    """Attach debug buffer handler to the test/library loggers at DEBUG."""
    handler = _DebugBufferHandler()
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s"
        )
    )
    for name in _DEBUG_LOG_NAMES:
        log = logging.getLogger(name)
        log.setLevel(logging.DEBUG)
        log.addHandler(handler)


def _print_debug_buffer():
    """Print buffered debug log lines to stderr (visible when a test fails)."""
    if not _debug_log_buffer:
        return
    print("\n--- DEBUG LOG (recent) ---", file=sys.stderr)
    for line in _debug_log_buffer[-300:]:  # last 300 lines
        print(line, file=sys.stderr)
    print("--- END DEBUG LOG ---\n", file=sys.stderr)


@pytest.hookimpl(tryfirst=True, hookwrapper=True)
def pytest_runtest_makereport(item, call):
    """When a test fails, print buffered debug log messages."""
    outcome = yield
    report = outcome.get_result()
    if call.when == "call" and report.failed:
        _print_debug_buffer()


@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """Send DEBUG from library and test loggers to the failure buffer."""
    _install_debug_buffer()


@pytest.fixture(autouse=True)
def clear_debug_buffer():
    """Clear the debug log buffer before each test so failures show only that test's logs."""
    _debug_log_buffer.clear()
    yield
