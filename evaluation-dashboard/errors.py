"""
Error types raised by the evaluation engine.

Validation problems are handled inside the controller and never reach the
caller of an edit. Auth expiry is surfaced as its own signal so the caller
can send the user back to the login page.
"""


class EngineError(Exception):
    """Base class for engine errors."""


class ValidationError(EngineError, ValueError):
    """Malformed score or missing required field."""


class AuthExpired(EngineError):
    """The data source rejected the bearer credential (HTTP 401)."""


class PersistenceFailure(EngineError):
    """A read or write against the data source failed."""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


class ImportParseError(EngineError, ValueError):
    """The uploaded file is not a readable spreadsheet at all."""
