"""
Exception types and their mapping to client-visible outcomes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

PATH_REQUIRED_MESSAGE = "File path is required."
INVALID_SIZE_MESSAGE = "Invalid width or height parameter."
NOT_FOUND_MESSAGE = "File not found."
INTERNAL_ERROR_MESSAGE = "Internal server error processing image."


class ThumbcacheError(Exception):
    """Base class for thumbnail service errors."""


class BadRequestError(ThumbcacheError):
    """Client supplied a missing or malformed parameter."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class SourceNotFoundError(ThumbcacheError):
    """The source identifier does not resolve to readable data."""


class TransformError(ThumbcacheError):
    """Decoding, resizing or encoding the source image failed."""


class CacheStoreError(ThumbcacheError):
    """The key-value store rejected or failed an operation."""


class Outcome(str, Enum):
    HIT = "hit"
    MISS = "miss"
    BAD_REQUEST = "bad_request"
    NOT_FOUND = "not_found"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True)
class ErrorOutcome:
    """A classified failure: outcome, HTTP status and client message."""
    outcome: Outcome
    status_code: int
    message: str


def classify_error(exc: BaseException) -> ErrorOutcome:
    """
    Map a failure raised while serving a thumbnail to its outcome.

    BadRequest -> 400, SourceNotFound -> 404, everything else -> 500.
    All outcomes are terminal; nothing here is retried.
    """
    if isinstance(exc, BadRequestError):
        return ErrorOutcome(Outcome.BAD_REQUEST, 400, exc.reason)
    if isinstance(exc, SourceNotFoundError):
        return ErrorOutcome(Outcome.NOT_FOUND, 404, NOT_FOUND_MESSAGE)
    return ErrorOutcome(Outcome.INTERNAL_ERROR, 500, INTERNAL_ERROR_MESSAGE)


def log_classified(outcome: ErrorOutcome, source_id: str | None, exc: BaseException) -> None:
    """Log a classified failure at the level its outcome calls for."""
    if outcome.outcome is Outcome.BAD_REQUEST:
        logger.debug(f"[API/IMAGE] Bad request for {source_id}: {outcome.message}")
    elif outcome.outcome is Outcome.NOT_FOUND:
        logger.error(f"[API/IMAGE] File not found: {source_id}")
    else:
        logger.error(f"[API/IMAGE] Error processing image {source_id}: {exc}", exc_info=exc)
