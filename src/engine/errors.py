"""
Engine error taxonomy.

Every failure inside the engine is one of these.  The service layer catches
them all and turns each into a defined terminal response, so none reaches the
HTTP caller as an unhandled exception.
"""
from __future__ import annotations

from typing import Any


class EngineError(Exception):
    """Base class for all query-engine failures."""


class InvalidInput(EngineError):
    """The question was empty or not a string."""


class ModelInvocationError(EngineError):
    """The text-generation service failed, timed out, or returned nothing usable."""


class QueryExecutionError(EngineError):
    """The data store rejected the query."""


class QueryTimeoutError(QueryExecutionError):
    """The data store (or the per-attempt timer) gave up on the query."""


class ExhaustedAttempts(EngineError):
    """All attempts were spent and no usable result exists."""

    def __init__(self, message: str, attempts: list[Any] | None = None):
        super().__init__(message)
        self.attempts = attempts or []
