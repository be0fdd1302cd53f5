from enum import Enum


class ErrorCode(str, Enum):
    # budget store
    invalid_month_format = "INVALID_MONTH_FORMAT"
    future_month_not_allowed = "FUTURE_MONTH_NOT_ALLOWED"
    negative_income_not_allowed = "NEGATIVE_INCOME_NOT_ALLOWED"
    invalid_income_amount = "INVALID_INCOME_AMOUNT"
    income_too_large = "INCOME_TOO_LARGE"
    invalid_budget_status = "INVALID_BUDGET_STATUS"
    duplicate_active_budget = "DUPLICATE_ACTIVE_BUDGET"
    immutable_field_update = "IMMUTABLE_FIELD_UPDATE"
    budget_not_found = "BUDGET_NOT_FOUND"

    # allocation store
    invalid_allocation_type = "INVALID_ALLOCATION_TYPE"
    allocation_value_negative = "ALLOCATION_VALUE_NEGATIVE"
    invalid_allocation_value = "INVALID_ALLOCATION_VALUE"
    percentage_exceeds_100 = "PERCENTAGE_EXCEEDS_100"
    allocated_amount_negative = "ALLOCATED_AMOUNT_NEGATIVE"
    spent_amount_negative = "SPENT_AMOUNT_NEGATIVE"
    spent_exceeds_allocated = "SPENT_EXCEEDS_ALLOCATED"
    duplicate_allocation = "DUPLICATE_ALLOCATION"
    allocation_not_found = "ALLOCATION_NOT_FOUND"

    # money
    percentage_out_of_range = "PERCENTAGE_OUT_OF_RANGE"

    # planning
    category_not_found = "CATEGORY_NOT_FOUND"
    category_inactive = "CATEGORY_INACTIVE"
    budget_closed = "BUDGET_CLOSED"
    budget_already_closed = "BUDGET_ALREADY_CLOSED"
    allocation_validation_failed = "ALLOCATION_VALIDATION_FAILED"
    active_budget_delete_not_allowed = "ACTIVE_BUDGET_DELETE_NOT_ALLOWED"
    allocation_has_spending = "ALLOCATION_HAS_SPENDING"


class BudgetError(ValueError):
    """A rejected business rule. ``code`` is stable and machine readable."""

    def __init__(self, message: str, code: ErrorCode) -> None:
        super().__init__(message)
        self.code = code

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code.value}: {self})"


class NotFoundError(BudgetError):
    pass


class ConflictError(BudgetError):
    pass


class OutOfRangeError(BudgetError):
    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorCode.percentage_out_of_range)
