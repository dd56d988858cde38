"""Error taxonomy for the issue lifecycle core."""
from typing import Optional
from uuid import UUID


class LifecycleError(Exception):
    """Base class for every error the lifecycle core raises."""


class ValidationError(LifecycleError):
    """Raised for malformed input: blank required fields, unknown status values."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class IssueNotFoundError(LifecycleError):
    """Raised when an issue identifier does not resolve."""

    def __init__(self, issue_id: UUID):
        super().__init__(f"Issue not found: {issue_id}")
        self.issue_id = issue_id


class AuthorizationError(LifecycleError):
    """Raised when the acting role lacks permission for the requested mutation."""


class StoreError(LifecycleError):
    """Raised when the backing store fails (transport or constraint failure)."""


class FeedError(LifecycleError):
    """Raised (or delivered to on_error) when a feed subscription drops."""


class UploadError(LifecycleError):
    """Raised when an attachment could not be stored."""

    def __init__(self, message: str, filename: Optional[str] = None):
        super().__init__(message)
        self.filename = filename
