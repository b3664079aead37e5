"""Error types raised by the progress engine."""


class FluentworkError(Exception):
    """Base class for all progress engine errors."""


class StoreUnavailable(FluentworkError):
    """The persistence medium is unreachable or rejected a write."""

    def __init__(self, message: str, backend: str = "unknown"):
        super().__init__(message)
        self.backend = backend


class OracleUnavailable(FluentworkError):
    """An external generation or judgement call failed or returned unparsable output."""


class ValidationFailure(FluentworkError, ValueError):
    """A mutation would violate a record invariant."""
