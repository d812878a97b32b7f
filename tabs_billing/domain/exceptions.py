"""Domain-specific exceptions"""

from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from tabs_billing.domain.models import BillingGroupSummary, DeletionBlocker


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Caller input is invalid or a business precondition failed"""

    pass


class NotFoundError(ValidationError):
    """Referenced payment, billing group, line item or tab does not exist"""

    pass


class DeletionBlockedError(ValidationError):
    """Billing group deletion refused because financial records depend on it"""

    def __init__(
        self,
        message: str,
        blockers: "List[DeletionBlocker]",
        billing_group: "Optional[BillingGroupSummary]" = None,
        warnings: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.blockers = blockers
        self.billing_group = billing_group
        self.warnings = warnings or []


class UnauthorizedError(DomainException):
    """Caller's organization does not own the resource"""

    pass


class DatabaseError(DomainException):
    """Unexpected persistence failure; wraps the original cause"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is None:
            return self.args[0]
        return f"{self.args[0]}: {self.cause}"
