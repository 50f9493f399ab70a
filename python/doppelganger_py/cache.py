# Copyright (c) 2026 Steinwurf ApS
# SPDX-License-Identifier: MIT
"""Append-only byte cache shared by all doppelgangers of one factory."""

import logging
from types import TracebackType
from typing import Optional, Union

log = logging.getLogger(__name__)


class _EndOfData:
    """Marker recorded once the source reported end-of-data."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "EOF"


EOF = _EndOfData()

Outcome = Union[_EndOfData, BaseException]


class SharedCache:
    """Bytes pulled from the source so far, plus its terminal outcome.

    The byte sequence only grows. No memoryview of it is ever handed out,
    otherwise a later append would fail with BufferError.
    """

    __slots__ = ("_data", "_outcome", "_traceback")

    def __init__(self, initial: bytes = b"") -> None:
        self._data = bytearray(initial)
        self._outcome: Optional[Outcome] = None
        self._traceback: Optional[TracebackType] = None

    def __len__(self) -> int:
        return len(self._data)

    def append(self, data: Union[bytes, bytearray, memoryview]) -> None:
        """Append data to the end of the cache."""
        self._data += data

    def read(self, start: int, size: int) -> bytes:
        """Return a copy of up to size bytes starting at start."""
        if start < 0 or size < 0:
            raise ValueError(f"Invalid range: start={start}, size={size}")
        return bytes(self._data[start : start + size])

    def record(self, outcome: Outcome) -> bool:
        """Record the terminal outcome; the first one wins.

        Returns:
            True if outcome was stored, False if one was already recorded.
        """
        if self._outcome is not None:
            log.debug(
                "Ignoring outcome %r, already recorded %r", outcome, self._outcome
            )
            return False
        self._outcome = outcome
        if isinstance(outcome, BaseException):
            self._traceback = outcome.__traceback__
        return True

    @property
    def outcome(self) -> Optional[Outcome]:
        """None, EOF or the exception the source raised."""
        return self._outcome

    @property
    def traceback(self) -> Optional[TracebackType]:
        """Traceback of the recorded exception as the source raised it."""
        return self._traceback

    @property
    def exhausted(self) -> bool:
        """True once the source reported a terminal outcome."""
        return self._outcome is not None
