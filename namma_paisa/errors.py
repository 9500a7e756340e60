"""
Exception hierarchy for the loans service.

Each error carries the HTTP status the API layer reports it with.
"""


class PaisaError(Exception):
    """Base exception for all service errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PaisaError):
    """Raised when input is malformed or out of range."""

    status_code = 400


class NotFoundError(PaisaError):
    """Raised when a loan or installment does not exist or is not visible to the caller."""

    status_code = 404


class BusinessRuleError(PaisaError):
    """Raised when an operation is not allowed in the current state."""

    status_code = 400


class LoanClosedError(BusinessRuleError):
    """Raised when an operation needs an open loan."""


class InstallmentStateError(BusinessRuleError):
    """Raised when an installment is paid/unpaid contrary to what the operation needs."""


class NoUnpaidInstallmentsError(BusinessRuleError):
    """Raised when a closure finds nothing left to settle."""


class MonthLockedError(BusinessRuleError):
    """Raised when a financial entry is dated inside a closed month."""


class AuthenticationError(PaisaError):
    """Raised when the caller could not be identified."""

    status_code = 401


class PermissionDeniedError(PaisaError):
    """Raised when the caller lacks the role an operation needs."""

    status_code = 403
