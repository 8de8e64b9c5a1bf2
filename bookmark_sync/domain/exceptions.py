"""Domain-specific exceptions.

These exceptions represent rule violations in the sync data model. They are
raised synchronously and are never retried by the operation queue.
"""


class SyncDomainError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        """Initialize domain exception.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class DuplicateMappingError(SyncDomainError):
    """Raised when a folder or collection is already part of a mapping."""


class MappingNotFoundError(SyncDomainError):
    """Raised when a mapping id does not resolve."""


class InvalidOperationError(SyncDomainError):
    """Raised when a sync operation is missing required fields or is unsupported."""


class LocalFolderNotFoundError(SyncDomainError):
    """Raised when a mapped local folder no longer exists."""


class NotAuthenticatedError(SyncDomainError):
    """Raised when a remote call is attempted without a usable credential."""


class DuplicateLinkError(SyncDomainError):
    """Raised when a link update would reuse a local or remote id already linked."""
