"""Exception hierarchy for the lending circle engine."""


class LendingCircleError(Exception):
    """Base exception for all lending circle errors."""


class NotFoundError(LendingCircleError):
    """Raised when a group, loan or payment does not exist."""


class ForbiddenError(LendingCircleError):
    """Raised when the actor's role or membership does not allow the operation."""


class BadRequestError(LendingCircleError):
    """Raised when a request violates a business rule."""


class InternalError(LendingCircleError):
    """Raised when a transaction fails or the capital ledger is inconsistent."""
