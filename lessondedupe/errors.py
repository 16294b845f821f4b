"""
Error taxonomy for duplicate resolution.

Callers branch on the class, not the message:
- ValidationError: bad input, rejected before any side effect.
- ConflictError: the group changed underneath the caller; refresh the view.
- UpstreamUnavailable: report or record store unreachable; retry with backoff.
- PersistenceFailure: the write failed and was rolled back.
"""

from typing import Optional


class DedupeError(Exception):
    """Base class for all duplicate-resolution errors."""
    pass


class ValidationError(DedupeError):
    """Raised when input has the wrong shape or violates a precondition."""
    pass


class InvalidCanonical(ValidationError):
    """Raised when the chosen canonical id is not a member of the group."""

    def __init__(self, canonical_id: str, group_key: str):
        self.canonical_id = canonical_id
        self.group_key = group_key
        super().__init__(f"Canonical {canonical_id!r} is not a member of group {group_key!r}")


class NotAuthorized(ValidationError):
    """Raised when the caller lacks the role required to resolve groups."""
    pass


class ConflictError(DedupeError):
    """Raised when the durable state no longer matches the caller's view."""
    pass


class AlreadyResolved(ConflictError):
    """Raised when a resolution already exists for the group key."""

    def __init__(self, group_key: str, existing=None):
        self.group_key = group_key
        self.existing = existing
        super().__init__(f"Group {group_key!r} has already been resolved")


class StaleGroup(ConflictError):
    """Raised when a group member is missing or archived since the group was listed."""

    def __init__(self, group_key: str, lesson_ids, reason: Optional[str] = None):
        self.group_key = group_key
        self.lesson_ids = tuple(lesson_ids)
        message = f"Group {group_key!r} is stale: {', '.join(self.lesson_ids)} no longer live"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class UpstreamUnavailable(DedupeError):
    """Raised when the duplicate report or the record store cannot be reached."""
    pass


class PersistenceFailure(DedupeError):
    """Raised when a resolution could not be committed. No partial state remains."""
    pass
