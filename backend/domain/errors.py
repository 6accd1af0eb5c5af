"""Failure taxonomy shared by the reservation and queue services."""

from __future__ import annotations


class EngineError(Exception):
    """Base class for every failure the engine reports to callers."""


class ValidationError(EngineError):
    """Raised when request inputs are malformed or out of range."""


class NotFoundError(EngineError):
    """Raised when a reservation or queue entry id does not exist."""


class ForbiddenError(EngineError):
    """Raised when the caller does not own the record it is acting on."""


class ConflictError(EngineError):
    """Raised when an active hold or a confirmed booking already covers the slot."""


class InvalidStateError(EngineError):
    """Raised when the record's current status does not allow the operation."""


class ExpiredError(EngineError):
    """Raised when a hold's deadline has passed."""


class StoreUnavailableError(EngineError):
    """Raised when the database cannot serve a read or write."""
