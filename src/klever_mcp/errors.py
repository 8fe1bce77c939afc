"""Error taxonomy for the context store."""


class ContextError(Exception):
    """Base class for all context store errors."""


class NotFoundError(ContextError, LookupError):
    """Raised when an operation references an unknown context id."""

    def __init__(self, context_id: str):
        self.context_id = context_id
        super().__init__(f"Context not found: {context_id}")


class ValidationError(ContextError, ValueError):
    """Raised when a payload or query is malformed."""


class StorageError(ContextError):
    """
    Raised when a backend is unreachable or an atomic batch fails.

    A failed batch never leaves partial index state behind, so callers may
    retry the whole operation with the same arguments.
    """


class CapacityError(StorageError):
    """Raised when the in-memory backend is full and a new id is stored."""
