"""
Error taxonomy for board persistence.

Gateways raise these; the engine, session and form controller turn them
into notices and a defined board state.
"""


class BoardError(Exception):
    """Base class for all board errors."""

    kind = "error"

    def __init__(self, message: str = "", task_id: str = ""):
        super().__init__(message)
        self.task_id = task_id


class ValidationFailed(BoardError):
    """A required field is missing or malformed."""

    kind = "validation_failed"


class NotFound(BoardError):
    """The target task no longer exists."""

    kind = "not_found"


class StoreUnavailable(BoardError):
    """Connectivity, auth or backend failure (timeouts included)."""

    kind = "store_unavailable"
