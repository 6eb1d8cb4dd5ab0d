"""
Ledger Error Taxonomy

Every failure a caller can act on has its own type:

- ValidationError: malformed or missing input (never reaches storage)
- NotFoundError: absent OR owned by someone else (same message for both)
- ContainerNotFoundError: container vanished mid-operation (an anomaly)
- HasDependentsError: deletion blocked by active dependents
- DuplicateError: unique name already taken
- StatementStateError: illegal statement job transition

Storage failures are StorageError (see services.storage.interface).
"""

from typing import Optional

from finledger.models.ledger import ContainerRef, ValidationIssue


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class ValidationError(LedgerError):
    """Input failed validation. Nothing was written."""

    def __init__(self, message: str, issues: Optional[list[ValidationIssue]] = None):
        self.issues = issues or []
        super().__init__(message)

    @classmethod
    def for_field(cls, field: str, issue_type: str, message: str) -> "ValidationError":
        return cls(
            message,
            issues=[ValidationIssue(field=field, issue_type=issue_type, message=message)],
        )


class InvalidReferenceError(ValidationError):
    """Both or neither of account_id / credit_card_id were provided."""
    pass


class NotFoundError(LedgerError):
    """
    Entity is absent or not owned by the caller.

    The message never says which, so existence is not leaked across users.
    """

    def __init__(self, entity: str):
        self.entity = entity
        super().__init__(f"{entity.replace('_', ' ').capitalize()} not found")


class ContainerNotFoundError(LedgerError):
    """The container disappeared between validation and balance application."""

    def __init__(self, ref: ContainerRef):
        self.ref = ref
        super().__init__(f"Container {ref} is missing or deleted")


class HasDependentsError(LedgerError):
    """Deletion blocked because active records still depend on the entity."""

    def __init__(self, entity: str, dependents: int):
        self.entity = entity
        self.dependents = dependents
        super().__init__(
            f"Cannot delete {entity.replace('_', ' ')} with {dependents} active "
            f"transaction{'s' if dependents != 1 else ''}. "
            "Delete or move the transactions first."
        )


class DuplicateError(LedgerError):
    """Attempted to create a second entity with the same unique name."""
    pass


class StatementStateError(LedgerError):
    """Statement job cannot move to the requested state."""
    pass
