"""Errors raised by the budgeting core and record store."""


class FinanceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(FinanceError):
    """Malformed input: bad month token, bad id, invalid reference."""

    status_code = 400


class TypeMismatchError(ValidationError):
    def __init__(self, category_type: str):
        super().__init__(f"Transaction type must match category type ({category_type})")
        self.category_type = category_type


class NotFoundError(FinanceError):
    status_code = 404


class UnloadedRelationError(FinanceError):
    """A rollup was asked to aggregate over a relation that was never fetched."""
