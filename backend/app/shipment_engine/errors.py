"""Structured processing failures.

Engines raise ``ProcessingError``; the operation boundary (single processing,
each batch step, the review queue) turns it into an ``ok=False`` result.
"""

import enum


class FailureCode(str, enum.Enum):
    AMBIGUOUS_MATCH = "AMBIGUOUS_MATCH"
    NO_IDENTITY = "NO_IDENTITY"
    JOURNEY_NOT_READY = "JOURNEY_NOT_READY"
    MISSING_KEY = "MISSING_KEY"
    MISSING_BASE_RECORD = "MISSING_BASE_RECORD"
    NO_BASE_RECORD = "NO_BASE_RECORD"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    UNKNOWN_STAGE = "UNKNOWN_STAGE"
    NOT_FOUND = "NOT_FOUND"
    WRITE_FAILED = "WRITE_FAILED"


class Transition(str, enum.Enum):
    NOT_FORWARD = "not_forward"
    SKIPPED = "skipped"


class ProcessingError(Exception):
    def __init__(self, code: FailureCode, message: str, **details):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message, **self.details}

    def __repr__(self) -> str:
        return f"ProcessingError({self.code.value}, {self.message!r})"
