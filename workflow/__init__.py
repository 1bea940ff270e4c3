"""MTR review workflow."""

from workflow.autosave import AutoSaver
from workflow.controller import ReviewController
from workflow.errors import (
    ConflictError,
    IdentityRecoveryError,
    PersistenceError,
    PreconditionError,
    ReviewNotFoundError,
    ValidationError,
    WorkflowError,
)
from workflow.registry import ReviewRegistry, get_registry

__all__ = [
    "AutoSaver",
    "ReviewController",
    "ReviewRegistry",
    "get_registry",
    "WorkflowError",
    "ValidationError",
    "ConflictError",
    "PersistenceError",
    "ReviewNotFoundError",
    "PreconditionError",
    "IdentityRecoveryError",
]
