# Copyright (c) 2026 Steinwurf ApS
# SPDX-License-Identifier: MIT
"""Read a single-pass byte stream many times through independent readers.

A :class:`DoppelgangerFactory` wraps the original stream and caches every
byte it pulls from it. Each :class:`Doppelganger` minted by the factory
reads that cache from the start with its own cursor, asking the factory to
pull more from the source only when it runs out.
"""

import io
import logging
import threading
from types import TracebackType
from typing import Any, Optional, Set, Union

from .cache import EOF, Outcome, SharedCache

log = logging.getLogger(__name__)


class DoppelgangerError(Exception):
    """Base exception for doppelganger errors."""

    pass


class NoSourceError(DoppelgangerError):
    """Raised on every read when the factory wraps no source."""

    pass


class NotRegisteredError(DoppelgangerError):
    """Raised when removing a reader the factory does not know about."""

    pass


class DoppelgangerFactory:
    """Owner of the original stream and the cache shared by its readers.

    The source must provide ``readinto(buffer)`` or ``read(size)``. A
    zero-length read marks the end of the data, a raised exception marks a
    failure. Either is recorded once and replayed to every reader that
    reaches the end of the cache. The source's own ``close()`` is never
    called; whoever created the source stays responsible for it.
    """

    def __init__(self, source: Any, min_read_size: int = 1) -> None:
        """Wrap source without reading from it.

        Args:
            source: Object with readinto() or read(), or None
            min_read_size: Smallest number of bytes requested from the source
                per read

        Raises:
            ValueError: If min_read_size is not positive
        """
        if min_read_size < 1:
            raise ValueError(f"min_read_size must be positive: {min_read_size}")

        self._source = source
        self._min_read_size = min_read_size
        self._cache = SharedCache()
        self._lock = threading.Lock()
        self._views: Set["Doppelganger"] = set()
        self._views_lock = threading.Lock()
        self._closed = False
        self._source_reads = 0

        log.debug(
            "Creating DoppelgangerFactory for %r (min_read_size=%d)",
            source,
            min_read_size,
        )

    def new_view(self) -> "Doppelganger":
        """Return a new reader positioned at the first byte of the stream.

        The factory keeps the reader registered until it is closed, so use it
        in a with block or call close() when done; otherwise it lives as long
        as the factory.
        """
        view = Doppelganger(self)
        with self._views_lock:
            self._views.add(view)
            count = len(self._views)
        log.debug("Registered %r (%d active)", view, count)
        return view

    new_doppelganger = new_view

    def remove_view(self, view: "Doppelganger") -> None:
        """Unregister view from this factory.

        Raises:
            NotRegisteredError: If view was never registered here or was
                already removed
        """
        with self._views_lock:
            if view not in self._views:
                raise NotRegisteredError(f"{view!r} is not registered")
            self._views.remove(view)
            count = len(self._views)
        log.debug("Removed %r (%d active)", view, count)

    remove_doppelganger = remove_view

    def close(self) -> None:
        """Stop reading from the source.

        Readers keep working on the cached bytes and then see end-of-data,
        unless the source already reported an outcome. Waits for a source
        read in progress to finish. The source itself is left open.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
        log.info(
            "DoppelgangerFactory closed: cached=%d bytes, source_reads=%d, "
            "active_views=%d",
            len(self._cache),
            self._source_reads,
            self.view_count,
        )

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - stop reading from the source."""
        self.close()

    def ensure_available(self, cursor: int, size: int) -> Optional[Outcome]:
        """Make sure bytes beyond cursor are cached, reading the source if needed.

        Returns as soon as at least one byte past cursor is cached. Otherwise
        reads the source once, asking for enough bytes to cover cursor + size.
        A size of 0 never reads the source.

        Args:
            cursor: Bytes the calling reader has already consumed
            size: Bytes the calling reader would like to have

        Returns:
            The recorded outcome (EOF or an exception) if the source is done,
            otherwise None.

        Raises:
            NoSourceError: If the factory wraps no source
        """
        if self._source is None:
            raise NoSourceError("no source to mimic")

        if size <= 0:
            return self._cache.outcome

        if len(self._cache) > cursor:
            return self._cache.outcome

        outcome = self._settled_outcome()
        if outcome is not None:
            return outcome

        with self._lock:
            # Another reader may have filled the gap while this one waited.
            if len(self._cache) > cursor:
                return self._cache.outcome
            outcome = self._settled_outcome()
            if outcome is not None:
                return outcome
            self._fill(cursor + size - len(self._cache))
            return self._cache.outcome

    def read_cached(self, start: int, size: int) -> bytes:
        """Return a copy of up to size cached bytes starting at start."""
        return self._cache.read(start, size)

    def _settled_outcome(self) -> Optional[Outcome]:
        """Outcome that makes a source read pointless, or None."""
        if self._cache.outcome is not None:
            return self._cache.outcome
        if self._closed:
            return EOF
        return None

    def _fill(self, shortfall: int) -> None:
        """Read the source once and cache the result. Caller holds the lock."""
        size = max(shortfall, self._min_read_size)
        self._source_reads += 1
        try:
            data = self._read_source(size)
        except Exception as e:
            log.debug("Source raised %r after %d bytes", e, len(self._cache))
            self._cache.record(e)
            return

        if data is None:
            log.debug("Source has no data available right now")
            return

        if len(data) == 0:
            log.debug("Source reached end-of-data after %d bytes", len(self._cache))
            self._cache.record(EOF)
            return

        self._cache.append(data)
        log.debug(
            "Source read %d/%d bytes, cached=%d", len(data), size, len(self._cache)
        )

    def _read_source(self, size: int) -> Optional[Union[bytes, bytearray]]:
        readinto = getattr(self._source, "readinto", None)
        if readinto is not None:
            scratch = bytearray(size)
            n = readinto(scratch)
            if n is None:
                return None
            del scratch[n:]
            return scratch
        return self._source.read(size)

    @property
    def closed(self) -> bool:
        """True once close() was called."""
        return self._closed

    @property
    def cached_bytes(self) -> int:
        """Number of bytes pulled from the source so far."""
        return len(self._cache)

    @property
    def outcome(self) -> Optional[Outcome]:
        """Terminal outcome reported by the source, if any."""
        return self._cache.outcome

    @property
    def outcome_traceback(self) -> Optional[TracebackType]:
        """Traceback the recorded source exception was raised with, if any."""
        return self._cache.traceback

    @property
    def view_count(self) -> int:
        """Number of registered readers."""
        with self._views_lock:
            return len(self._views)

    @property
    def source_reads(self) -> int:
        """Number of times the source was read."""
        return self._source_reads

    def __repr__(self) -> str:
        return (
            f"<DoppelgangerFactory cached={len(self._cache)} "
            f"outcome={self._cache.outcome!r} closed={self._closed}>"
        )


class Doppelganger(io.RawIOBase):
    """Independent reader over a factory's cached stream.

    Behaves like a non-seekable raw stream, so read(), readall() and
    wrapping in io.BufferedReader work as usual. One instance should be
    used by one thread at a time; different instances are independent.
    """

    def __init__(self, factory: DoppelgangerFactory) -> None:
        super().__init__()
        self._factory = factory
        self._cursor = 0

    def readinto(self, b) -> Optional[int]:
        """Copy the next cached bytes into b, pulling from the source if needed.

        Returns:
            Number of bytes copied, 0 at end-of-data or after close(), or
            None if a non-blocking source had nothing to give.

        Raises:
            NoSourceError: If the factory wraps no source
            Exception: Whatever the source raised, once the cache is drained
        """
        if self.closed:
            return 0

        with memoryview(b) as view, view.cast("B") as target:
            size = len(target)
            outcome = self._factory.ensure_available(self._cursor, size)
            if size == 0:
                return 0

            chunk = self._factory.read_cached(self._cursor, size)
            if not chunk:
                if outcome is None:
                    return None
                if outcome is EOF:
                    return 0
                # Every replay starts from the traceback the source raised with.
                raise outcome.with_traceback(self._factory.outcome_traceback)

            n = len(chunk)
            target[:n] = chunk
            self._cursor += n
            return n

    def close(self) -> None:
        """Stop reading and unregister from the factory.

        Later reads return end-of-data. The shared cache and other readers
        are not affected.
        """
        if not self.closed:
            try:
                self._factory.remove_view(self)
            except NotRegisteredError:
                log.debug("%r was already removed from its factory", self)
        super().close()

    def readable(self) -> bool:
        """Always True; writing and seeking are not supported."""
        return True

    def tell(self) -> int:
        """Return the cursor."""
        return self._cursor

    @property
    def cursor(self) -> int:
        """Bytes delivered by this reader so far."""
        return self._cursor

    @property
    def factory(self) -> DoppelgangerFactory:
        """Factory this reader was minted by."""
        return self._factory

    def __repr__(self) -> str:
        return f"<Doppelganger at 0x{id(self):x} cursor={self._cursor}>"
