"""
Billing Errors

Structured, user-presentable errors raised by the billing services.
"""

BAD_REQUEST = "BAD_REQUEST"
UNAUTHORIZED = "UNAUTHORIZED"
FORBIDDEN = "FORBIDDEN"
NOT_FOUND = "NOT_FOUND"
PRECONDITION_FAILED = "PRECONDITION_FAILED"


class BillingError(Exception):
    """Billing error with a procedure error code."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)

    def __repr__(self) -> str:
        return f"BillingError(code={self.code!r}, message={self.message!r})"


def bad_request(message: str) -> BillingError:
    return BillingError(BAD_REQUEST, message)


def unauthorized(message: str) -> BillingError:
    return BillingError(UNAUTHORIZED, message)


def forbidden(message: str) -> BillingError:
    return BillingError(FORBIDDEN, message)
