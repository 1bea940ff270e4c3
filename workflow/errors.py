"""Review workflow errors."""


class WorkflowError(Exception):
    """Base class for review workflow failures."""


class ValidationError(WorkflowError):
    """A transition guard failed; the session is unchanged."""


class ConflictError(WorkflowError):
    """The patient already has an in-progress review."""

    def __init__(self, message: str, session_id: str | None = None):
        super().__init__(message)
        self.session_id = session_id


class PersistenceError(WorkflowError):
    """A persistence gateway call failed."""


class ReviewNotFoundError(PersistenceError):
    """The gateway has no session with the requested id."""


class PreconditionError(WorkflowError):
    """The review is not in a state that allows the operation."""


class IdentityRecoveryError(WorkflowError):
    """The session's durable id could not be resolved."""
