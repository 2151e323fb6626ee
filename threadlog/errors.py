"""Error kinds surfaced to the HTTP boundary."""
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    CORPUS_MISSING = "corpus_missing"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"


class ThreadlogError(Exception):
    """Base error; `kind` decides how the boundary renders it."""

    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class CorpusNotFoundError(ThreadlogError):
    kind = ErrorKind.CORPUS_MISSING


class SessionNotFoundError(ThreadlogError):
    kind = ErrorKind.NOT_FOUND


class TransientReadError(ThreadlogError):
    kind = ErrorKind.TRANSIENT
