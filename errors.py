"""Exceptions raised by the store's business logic and mapped to HTTP responses in main.py."""


class StoreError(Exception):
    """Base exception for store errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class RuleViolation(StoreError):
    """A business rule rejected the request (coupon not applicable, not enough stock, ...)."""

    status_code = 400


class Unauthorized(StoreError):
    """The caller is not signed in or its role may not perform the action."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class NotFound(StoreError):
    """Raised when a document id or slug doesn't resolve."""

    status_code = 404

    def __init__(self, what: str):
        self.what = what
        super().__init__(f"{what} not found")
