from typing import Optional


class DomainError(Exception):
    code = "domain_error"
    default_message = "Domain error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(DomainError, ValueError):
    code = "validation_error"
    default_message = "Invalid input"

    def __init__(self, message: Optional[str] = None, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class InvalidAmountError(ValidationError):
    code = "invalid_amount"
    default_message = "Invalid amount"

    def __init__(self, message: Optional[str] = None, *, field: Optional[str] = "amount") -> None:
        super().__init__(message, field=field)


class InvalidCategoryError(ValidationError):
    code = "invalid_category"
    default_message = "Invalid category"

    def __init__(self, message: Optional[str] = None, *, field: Optional[str] = "category") -> None:
        super().__init__(message, field=field)


class CurrencyMismatchError(ValidationError):
    code = "currency_mismatch"
    default_message = "Currencies must match"


class UnsupportedFormatError(ValidationError):
    code = "unsupported_format"
    default_message = "Unsupported file format"


class EmptyFileError(ValidationError):
    code = "empty_file"
    default_message = "File is empty"


class NotFoundError(DomainError):
    code = "not_found"
    default_message = "Resource not found"


class OwnershipError(DomainError):
    """Raised when an aggregate belongs to another owner.

    Carries the same message as NotFoundError so callers cannot test for
    the existence of other owners' data.
    """

    code = "forbidden"
    default_message = NotFoundError.default_message


class BusinessRuleError(DomainError):
    code = "business_rule"
    default_message = "Operation not allowed"


class InactiveOwnerError(BusinessRuleError):
    code = "inactive_owner"
    default_message = "Owner is inactive"


class DuplicateBudgetError(BusinessRuleError):
    code = "duplicate_budget"
    default_message = "An active budget already exists for this category and period"


class EmailAlreadyRegisteredError(BusinessRuleError):
    code = "email_taken"
    default_message = "Email already registered"


class InfrastructureError(DomainError):
    code = "infrastructure_error"
    default_message = "Storage is unavailable"


class SpreadsheetParseError(InfrastructureError):
    code = "parse_error"
    default_message = "Could not read spreadsheet"


class ConcurrencyConflictError(InfrastructureError):
    code = "concurrency_conflict"
    default_message = "Record was modified concurrently"
