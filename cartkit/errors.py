"""
Cart errors.

Message constants are kept next to the exception classes so callers and
tests share the same strings.
"""

# Row errors
ERROR_ROW_NOT_FOUND = "The cart does not contain rowId {row_id}."

# Validation errors
ERROR_INVALID_ID = "Please supply a valid identifier."
ERROR_INVALID_NAME = "Please supply a valid name."
ERROR_INVALID_QUANTITY = "Please supply a valid quantity."
ERROR_INVALID_PRICE = "Please supply a valid price."
ERROR_INVALID_RATE = "Please supply a valid {kind} rate between 0 and 100."
ERROR_INVALID_OPTIONS = "Options must be a JSON-serializable mapping with string keys."
ERROR_UNKNOWN_MODEL = "The supplied model {model} does not exist."

# Storage errors
ERROR_CART_UNAVAILABLE = "Cart storage unavailable"


class CartError(Exception):
    """Base error for cart operations."""

    code = "CART_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class NotFoundError(CartError):
    """Operation referenced a rowId that is not in the cart."""

    code = "ROW_NOT_FOUND"

    def __init__(self, row_id: str) -> None:
        super().__init__(ERROR_ROW_NOT_FOUND.format(row_id=row_id))
        self.row_id = row_id


InvalidRowIdError = NotFoundError


class ValidationError(CartError):
    """Malformed identity, negative amount or invalid rate."""

    code = "VALIDATION_ERROR"


class UnknownModelError(ValidationError):
    """Associated model type cannot be resolved."""

    code = "UNKNOWN_MODEL"

    def __init__(self, model: object) -> None:
        super().__init__(ERROR_UNKNOWN_MODEL.format(model=model))
        self.model = model


class CartUnavailableError(CartError):
    """A session or durable store backend failed."""

    code = "CART_UNAVAILABLE"

    def __init__(self, message: str = ERROR_CART_UNAVAILABLE, cause: Exception | None = None) -> None:
        super().__init__(f"{message}: {cause}" if cause else message)
        self.cause = cause


__all__ = [
    "ERROR_ROW_NOT_FOUND",
    "ERROR_INVALID_ID",
    "ERROR_INVALID_NAME",
    "ERROR_INVALID_QUANTITY",
    "ERROR_INVALID_PRICE",
    "ERROR_INVALID_RATE",
    "ERROR_INVALID_OPTIONS",
    "ERROR_UNKNOWN_MODEL",
    "ERROR_CART_UNAVAILABLE",
    "CartError",
    "NotFoundError",
    "InvalidRowIdError",
    "ValidationError",
    "UnknownModelError",
    "CartUnavailableError",
]
