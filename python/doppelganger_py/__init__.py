# Copyright (c) 2026 Steinwurf ApS
# SPDX-License-Identifier: MIT
"""Independent, repeatable readers over a single-pass byte stream."""

from .cache import EOF, SharedCache
from .reader import (
    Doppelganger,
    DoppelgangerError,
    DoppelgangerFactory,
    NoSourceError,
    NotRegisteredError,
)

__all__ = [
    "EOF",
    "Doppelganger",
    "DoppelgangerError",
    "DoppelgangerFactory",
    "NoSourceError",
    "NotRegisteredError",
    "SharedCache",
]
__version__ = "0.1.0"
