"""
Errors raised by the lifecycle engine and its document store.

Every failure path raises one of these; callers translate them (the API layer
maps them to HTTP responses). ``step`` names the stage that failed so a caller
can tell a rejected request from a storage problem worth retrying.
"""
from typing import Optional


class TransitionError(Exception):
    """Base class for lifecycle failures."""
    retryable = False

    def __init__(self, message: str, step: str, application_id: Optional[str] = None):
        self.message = message
        self.step = step
        self.application_id = application_id
        super().__init__(self.message)


class ApplicationNotFoundError(TransitionError):
    def __init__(self, application_id: str, step: str = "load"):
        super().__init__(f"Application {application_id} not found", step, application_id)


class InvalidStatusError(TransitionError):
    def __init__(self, status, application_id: Optional[str] = None):
        self.status = status
        super().__init__(f"Invalid status: {status!r}", "validate", application_id)


class UploadFailedError(TransitionError):
    """The binary storage collaborator failed; nothing was recorded."""
    retryable = True

    def __init__(self, message: str, application_id: Optional[str] = None):
        super().__init__(message, "upload", application_id)


class StoreWriteConflictError(TransitionError):
    """The application changed between read and write."""
    retryable = True

    def __init__(self, application_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Application {application_id} was modified concurrently",
            "persist",
            application_id,
        )


class StoreError(TransitionError):
    """The document store failed for a reason other than a write conflict."""

    def __init__(
        self,
        message: str,
        application_id: Optional[str] = None,
        step: str = "persist",
        retryable: bool = False,
    ):
        super().__init__(message, step, application_id)
        self.retryable = retryable
